"""
券存储
除普通读写外，提供核销/作废所需的原子条件更新：
检查与修改在同一条 UPDATE 语句里完成，不存在“先查后改”的竞争窗口。
所有按券码的读写都带 tenant_id 条件。
"""
from datetime import datetime
from functools import wraps
from typing import List, Optional, Tuple, Union
from sqlalchemy import select, update, and_, or_, func
from sqlalchemy.exc import OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
from spinwin.core.exceptions import StoreUnavailableError
from spinwin.models import Customer, Prize, Voucher, VoucherRedemption
from spinwin.services.validation import ForeignVoucher
import logging

logger = logging.getLogger(__name__)


def store_operation(func_):
    """把数据库连接类故障统一转换为 StoreUnavailableError（唯一约束冲突等不在此列）"""
    @wraps(func_)
    async def wrapper(*args, **kwargs):
        try:
            return await func_(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.error(f"存储操作失败 {func_.__name__}: {e}")
            raise StoreUnavailableError(str(e)) from e
    return wrapper


def _with_relations(stmt):
    return stmt.options(joinedload(Voucher.prize), joinedload(Voucher.customer))


def redeemable_predicate(now: datetime):
    """可核销条件：未作废、未过期、次数未用完"""
    return and_(
        Voucher.voided_at.is_(None),
        Voucher.expires_at > now,
        Voucher.redemption_count < Voucher.redemption_limit,
    )


def status_predicate(status: str, now: datetime):
    """与 validation.compute_status 等价的 SQL 条件，用于在数据库侧筛选状态"""
    exhausted = Voucher.redemption_count >= Voucher.redemption_limit
    if status == "active":
        return redeemable_predicate(now)
    if status == "redeemed":
        return exhausted
    if status == "expired":
        return and_(
            ~exhausted,
            or_(Voucher.voided_at.isnot(None), Voucher.expires_at <= now),
        )
    return None


@store_operation
async def commit(db: AsyncSession):
    await db.commit()


@store_operation
async def add_voucher(db: AsyncSession, voucher: Voucher) -> Voucher:
    """写入新券并提交；(tenant_id, code) 或 spin_id 冲突时抛出 IntegrityError"""
    db.add(voucher)
    await db.commit()
    return voucher


@store_operation
async def get_by_spin(db: AsyncSession, tenant_id: str, spin_id: str) -> Optional[Voucher]:
    stmt = _with_relations(select(Voucher)).where(
        Voucher.tenant_id == tenant_id,
        Voucher.spin_id == spin_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


@store_operation
async def get_by_id(db: AsyncSession, tenant_id: str, voucher_id: str) -> Optional[Voucher]:
    stmt = _with_relations(select(Voucher)).where(
        Voucher.tenant_id == tenant_id,
        Voucher.id == voucher_id,
    ).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


@store_operation
async def get_by_code(db: AsyncSession, tenant_id: str, code: str) -> Optional[Voucher]:
    stmt = _with_relations(select(Voucher)).where(
        Voucher.tenant_id == tenant_id,
        Voucher.code == code,
    ).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


@store_operation
async def prize_exists(db: AsyncSession, tenant_id: str, prize_id: str) -> bool:
    stmt = select(Prize.id).where(Prize.tenant_id == tenant_id, Prize.id == prize_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


@store_operation
async def customer_exists(db: AsyncSession, tenant_id: str, user_id: str) -> bool:
    stmt = select(Customer.id).where(Customer.tenant_id == tenant_id, Customer.id == user_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


@store_operation
async def spin_exists(db: AsyncSession, spin_id: str) -> bool:
    """spin_id 全局唯一，不限租户"""
    result = await db.execute(select(Voucher.id).where(Voucher.spin_id == spin_id))
    return result.scalar_one_or_none() is not None


@store_operation
async def code_exists(db: AsyncSession, tenant_id: str, code: str) -> bool:
    stmt = select(Voucher.id).where(Voucher.tenant_id == tenant_id, Voucher.code == code)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


@store_operation
async def find_foreign_owner(db: AsyncSession, tenant_id: str, code: str) -> Optional[str]:
    """券码在其他租户下是否存在，只返回归属租户，不读取券内容"""
    stmt = select(Voucher.tenant_id).where(
        Voucher.code == code,
        Voucher.tenant_id != tenant_id,
    ).limit(1)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def lookup_for_validation(
    db: AsyncSession, tenant_id: str, code: str
) -> Union[Voucher, ForeignVoucher, None]:
    """验券用查询：本租户的券 / 其他租户的占位 / None"""
    voucher = await get_by_code(db, tenant_id, code)
    if voucher is not None:
        return voucher
    owner = await find_foreign_owner(db, tenant_id, code)
    if owner is not None:
        return ForeignVoucher(code=code, tenant_id=owner)
    return None


@store_operation
async def conditional_redeem(
    db: AsyncSession,
    tenant_id: str,
    code: str,
    merchant_id: str,
    now: datetime,
) -> Optional[Tuple[str, int]]:
    """
    原子核销：次数 +1，仅当租户匹配、未作废、未过期、次数未用完时生效

    返回 (voucher_id, 核销后次数)；条件不满足返回 None。
    调用方负责提交事务。SET 子句中引用的列取更新前的值。
    """
    stmt = (
        update(Voucher)
        .where(
            Voucher.tenant_id == tenant_id,
            Voucher.code == code,
            redeemable_predicate(now),
        )
        .values(
            redemption_count=Voucher.redemption_count + 1,
            is_redeemed=(Voucher.redemption_count + 1) >= Voucher.redemption_limit,
            redeemed_at=func.coalesce(Voucher.redeemed_at, now),
            redeemed_by=merchant_id,
        )
        .returning(Voucher.id, Voucher.redemption_count)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


@store_operation
async def record_redemption(
    db: AsyncSession,
    voucher_id: str,
    tenant_id: str,
    merchant_id: str,
    redemption_number: int,
    now: datetime,
) -> VoucherRedemption:
    entry = VoucherRedemption(
        voucher_id=voucher_id,
        tenant_id=tenant_id,
        merchant_id=merchant_id,
        redemption_number=redemption_number,
        redeemed_at=now,
    )
    db.add(entry)
    await db.flush()
    return entry


@store_operation
async def list_redemptions(db: AsyncSession, tenant_id: str, voucher_id: str) -> List[VoucherRedemption]:
    stmt = select(VoucherRedemption).where(
        VoucherRedemption.tenant_id == tenant_id,
        VoucherRedemption.voucher_id == voucher_id,
    ).order_by(VoucherRedemption.redemption_number)
    result = await db.execute(stmt)
    return list(result.scalars().all())


@store_operation
async def conditional_void(
    db: AsyncSession,
    tenant_id: str,
    voucher_id: str,
    voided_by: str,
    now: datetime,
) -> bool:
    """原子作废：只作废仍可核销的券。调用方负责提交事务"""
    stmt = (
        update(Voucher)
        .where(
            Voucher.tenant_id == tenant_id,
            Voucher.id == voucher_id,
            redeemable_predicate(now),
        )
        .values(voided_at=now, voided_by=voided_by)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


@store_operation
async def set_qr_image_url(db: AsyncSession, tenant_id: str, voucher_id: str, url: str) -> bool:
    """写入二维码地址（只填空值，不覆盖）"""
    stmt = (
        update(Voucher)
        .where(
            Voucher.tenant_id == tenant_id,
            Voucher.id == voucher_id,
            Voucher.qr_image_url.is_(None),
        )
        .values(qr_image_url=url)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount == 1


@store_operation
async def find_missing_qr(db: AsyncSession, limit: int) -> List[Tuple[str, str, str]]:
    """需要补生成二维码的券：(id, tenant_id, code)"""
    stmt = (
        select(Voucher.id, Voucher.tenant_id, Voucher.code)
        .where(Voucher.qr_requested.is_(True), Voucher.qr_image_url.is_(None))
        .order_by(Voucher.created_at)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [(row[0], row[1], row[2]) for row in result.all()]
