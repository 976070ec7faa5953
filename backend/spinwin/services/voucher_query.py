"""
券查询：管理端列表、统计、按手机号查券、导出
状态（active/redeemed/expired）全部实时计算，不落库
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
from spinwin.core.timeutil import utcnow, to_naive_utc
from spinwin.models import Voucher, Customer
from spinwin.schemas import (
    PrizeInfo,
    CustomerInfo,
    VoucherRead,
    PhoneLookupItem,
    VoucherFilters,
    Pagination,
    VoucherListResponse,
    VoucherStats,
    VoucherStatus,
)
from spinwin.services.validation import compute_status
from spinwin.services.voucher_store import store_operation, status_predicate
import csv
import io
import logging
import math

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "Code",
    "Customer Name",
    "Customer Phone",
    "Prize",
    "Status",
    "Created",
    "Expires",
    "Redeemed At",
]


@dataclass
class VoucherExport:
    content: str
    total: int
    truncated: bool


def to_voucher_read(voucher: Voucher, now: datetime) -> VoucherRead:
    """ORM 券对象 -> 完整视图（需已加载 prize / customer）"""
    return VoucherRead(
        id=voucher.id,
        code=voucher.code,
        tenant_id=voucher.tenant_id,
        spin_id=voucher.spin_id,
        prize_id=voucher.prize_id,
        user_id=voucher.user_id,
        prize=PrizeInfo(name=voucher.prize.name, description=voucher.prize.description),
        customer=CustomerInfo(name=voucher.customer.name, phone=voucher.customer.phone),
        status=compute_status(voucher, now),
        created_at=voucher.created_at,
        expires_at=voucher.expires_at,
        redemption_count=voucher.redemption_count,
        redemption_limit=voucher.redemption_limit,
        is_redeemed=voucher.is_redeemed,
        redeemed_at=voucher.redeemed_at,
        redeemed_by=voucher.redeemed_by,
        voided_at=voucher.voided_at,
        qr_image_url=voucher.qr_image_url,
    )


def _filtered_query(tenant_id: str, filters: VoucherFilters, now: datetime):
    """按筛选条件构造查询（始终限定租户）"""
    stmt = select(Voucher).join(Customer, Voucher.user_id == Customer.id).where(
        Voucher.tenant_id == tenant_id
    )

    predicate = status_predicate(filters.status, now)
    if predicate is not None:
        stmt = stmt.where(predicate)

    if filters.search and filters.search.strip():
        term = filters.search.strip()
        stmt = stmt.where(or_(
            Voucher.code.icontains(term, autoescape=True),
            Customer.phone.contains(term, autoescape=True),
        ))

    if filters.start_date:
        stmt = stmt.where(Voucher.created_at >= to_naive_utc(filters.start_date))
    if filters.end_date:
        stmt = stmt.where(Voucher.created_at <= to_naive_utc(filters.end_date))

    return stmt


@store_operation
async def get_vouchers(
    db: AsyncSession,
    tenant_id: str,
    filters: Optional[VoucherFilters] = None,
    now: Optional[datetime] = None,
) -> VoucherListResponse:
    """
    管理端券列表

    支持按状态、券码/手机号搜索、创建时间范围筛选，按创建时间倒序分页（页码从 1 开始）
    """
    filters = filters or VoucherFilters()
    now = to_naive_utc(now) or utcnow()
    base = _filtered_query(tenant_id, filters, now)

    total = (await db.execute(
        select(func.count()).select_from(base.subquery())
    )).scalar_one()

    offset = (filters.page - 1) * filters.limit
    stmt = (
        base.options(joinedload(Voucher.prize), joinedload(Voucher.customer))
        .order_by(Voucher.created_at.desc(), Voucher.id)
        .offset(offset)
        .limit(filters.limit)
    )
    rows = (await db.execute(stmt)).scalars().all()

    return VoucherListResponse(
        vouchers=[to_voucher_read(v, now) for v in rows],
        pagination=Pagination(
            page=filters.page,
            limit=filters.limit,
            total=total,
            total_pages=math.ceil(total / filters.limit) if filters.limit else 0,
        ),
    )


@store_operation
async def get_voucher_stats(
    db: AsyncSession,
    tenant_id: str,
    now: Optional[datetime] = None,
) -> VoucherStats:
    """租户全部券的状态统计"""
    now = to_naive_utc(now) or utcnow()
    stmt = select(Voucher).where(Voucher.tenant_id == tenant_id)
    vouchers = (await db.execute(stmt)).scalars().all()

    stats = VoucherStats(total=len(vouchers))
    for voucher in vouchers:
        status = compute_status(voucher, now)
        if status == VoucherStatus.ACTIVE:
            stats.active += 1
        elif status == VoucherStatus.REDEEMED:
            stats.redeemed += 1
        else:
            stats.expired += 1
    return stats


@store_operation
async def get_vouchers_by_phone(
    db: AsyncSession,
    phone: str,
    tenant_id: str,
    now: Optional[datetime] = None,
) -> List[PhoneLookupItem]:
    """按顾客手机号查本租户的券，最新的在前；手机号为空或无结果返回空列表"""
    phone = (phone or "").strip()
    if not phone:
        return []

    now = to_naive_utc(now) or utcnow()
    stmt = (
        select(Voucher)
        .join(Customer, Voucher.user_id == Customer.id)
        .options(joinedload(Voucher.prize))
        .where(Voucher.tenant_id == tenant_id, Customer.phone == phone)
        .order_by(Voucher.created_at.desc(), Voucher.id)
    )
    vouchers = (await db.execute(stmt)).scalars().all()

    return [
        PhoneLookupItem(
            code=v.code,
            prize=PrizeInfo(name=v.prize.name, description=v.prize.description),
            status=compute_status(v, now),
            expires_at=v.expires_at,
            created_at=v.created_at,
            redemption_count=v.redemption_count,
            redemption_limit=v.redemption_limit,
            qr_image_url=v.qr_image_url,
        )
        for v in vouchers
    ]


async def export_vouchers_csv(
    db: AsyncSession,
    tenant_id: str,
    filters: Optional[VoucherFilters] = None,
    max_rows: int = 10000,
    now: Optional[datetime] = None,
) -> VoucherExport:
    """按列表同样的筛选条件导出 CSV（不分页，最多 max_rows 行，超出时 truncated=True）"""
    filters = (filters or VoucherFilters()).model_copy(update={"page": 1, "limit": max_rows})
    result = await get_vouchers(db, tenant_id, filters, now=now)

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for v in result.vouchers:
        writer.writerow([
            v.code,
            v.customer.name or "",
            v.customer.phone,
            v.prize.name,
            v.status.value,
            f"{v.created_at:%Y-%m-%d}",
            f"{v.expires_at:%Y-%m-%d}",
            f"{v.redeemed_at:%Y-%m-%d}" if v.redeemed_at else "",
        ])
    total = result.pagination.total
    truncated = total > len(result.vouchers)
    if truncated:
        logger.warning(f"导出被截断: tenant={tenant_id}, 共 {total} 条，只导出 {len(result.vouchers)} 条")
    return VoucherExport(content=buffer.getvalue(), total=total, truncated=truncated)
