"""
发券与作废
发券：中奖后由转盘子系统调用，生成券码（冲突重试）、计算有效期并入库
作废：管理员操作，原子条件更新，已核销完或已过期的券不能作废
"""
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from spinwin.core.config import get_settings
from spinwin.core.exceptions import (
    ErrorCode,
    InvalidVoucherReferenceError,
    SpinConflictError,
    VoucherCodeGenerationError,
)
from spinwin.core.timeutil import utcnow, to_naive_utc
from spinwin.models import Voucher
from spinwin.schemas import CreateVoucherParams, VoidResult, ValidationReason
from spinwin.services import voucher_store
from spinwin.services.code_generator import generate_voucher_code
from spinwin.services.notification_service import (
    NotificationPrize,
    VoucherNotification,
    send_voucher_notification,
    send_redemption_confirmation,
)
from spinwin.services.qr_service import attach_qr_image
from spinwin.services.validation import evaluate
from spinwin.services.voucher_query import to_voucher_read
import logging

logger = logging.getLogger(__name__)


async def create_voucher(
    db: AsyncSession,
    params: CreateVoucherParams,
    now: Optional[datetime] = None,
    max_attempts: Optional[int] = None,
) -> Optional[Voucher]:
    """
    为一次中奖创建券

    - validity_days 为空或 <= 0：奖品不发券，返回 None（不是错误）
    - 同一 spin 已有券：直接返回已有的券
    - 奖品/顾客不属于该租户：抛出 InvalidVoucherReferenceError
    - spin 已被其他租户的券占用：抛出 SpinConflictError
    - 券码冲突：重新生成，最多 max_attempts 次，仍失败抛出 VoucherCodeGenerationError
    """
    if not params.validity_days or params.validity_days <= 0:
        logger.info(f"奖品未配置有效期，不发券: spin={params.spin_id}")
        return None

    existing = await voucher_store.get_by_spin(db, params.tenant_id, params.spin_id)
    if existing is not None:
        logger.info(f"spin {params.spin_id} 已有券 {existing.code}，不重复创建")
        return existing

    if not await voucher_store.prize_exists(db, params.tenant_id, params.prize_id):
        raise InvalidVoucherReferenceError(f"Prize {params.prize_id} not found")
    if not await voucher_store.customer_exists(db, params.tenant_id, params.user_id):
        raise InvalidVoucherReferenceError(f"Customer {params.user_id} not found")
    if await voucher_store.spin_exists(db, params.spin_id):
        raise SpinConflictError(f"Spin {params.spin_id} already has a voucher")

    max_attempts = max_attempts or get_settings().voucher_code_max_attempts
    created_at = to_naive_utc(now) or utcnow()
    expires_at = created_at + timedelta(days=params.validity_days)

    for attempt in range(1, max_attempts + 1):
        code = generate_voucher_code(params.tenant_slug)
        voucher = Voucher(
            code=code,
            tenant_id=params.tenant_id,
            spin_id=params.spin_id,
            prize_id=params.prize_id,
            user_id=params.user_id,
            expires_at=expires_at,
            redemption_limit=params.redemption_limit,
            redemption_count=0,
            is_redeemed=False,
            qr_requested=params.generate_qr,
            created_at=created_at,
        )
        try:
            await voucher_store.add_voucher(db, voucher)
        except IntegrityError:
            await db.rollback()
            # 并发请求可能已为同一 spin 建券
            existing = await voucher_store.get_by_spin(db, params.tenant_id, params.spin_id)
            if existing is not None:
                logger.info(f"spin {params.spin_id} 已由并发请求建券 {existing.code}")
                return existing
            if await voucher_store.spin_exists(db, params.spin_id):
                raise SpinConflictError(f"Spin {params.spin_id} already has a voucher")
            if not await voucher_store.code_exists(db, params.tenant_id, code):
                # 不是券码冲突，不重试
                raise
            logger.warning(f"券码冲突: {code} (第 {attempt}/{max_attempts} 次)")
            continue

        voucher = await voucher_store.get_by_id(db, params.tenant_id, voucher.id)
        logger.info(f"发券成功: {code}, spin={params.spin_id}, 有效期至 {expires_at:%Y-%m-%d}")
        return voucher

    raise VoucherCodeGenerationError(f"{max_attempts} 次尝试后仍无法生成唯一券码")


async def deliver_new_voucher(
    session_factory: async_sessionmaker,
    voucher_id: str,
    tenant_id: str,
    code: str,
    prize_name: str,
    expires_at: datetime,
    phone: str,
    generate_qr: bool,
) -> None:
    """发券后的后台任务：先生成二维码（可选），再发通知；任何失败只记日志"""
    qr_image_url = None
    if generate_qr:
        qr_image_url = await attach_qr_image(session_factory, voucher_id, tenant_id, code)

    notification = VoucherNotification(
        code=code,
        prize=NotificationPrize(name=prize_name),
        expires_at=expires_at,
        qr_image_url=qr_image_url,
    )
    await send_voucher_notification(notification, phone)


async def deliver_redemption_confirmation(
    phone: str,
    code: str,
    prize_name: str,
    redemption_count: int,
    redemption_limit: int,
) -> None:
    await send_redemption_confirmation(phone, code, prize_name, redemption_count, redemption_limit)


async def void_voucher(
    db: AsyncSession,
    voucher_id: str,
    tenant_id: str,
    voided_by: str,
    now: Optional[datetime] = None,
) -> VoidResult:
    """作废一张仍可核销的券（作废后验券返回 voided，列表状态为 expired）"""
    now = to_naive_utc(now) or utcnow()

    if await voucher_store.conditional_void(db, tenant_id, voucher_id, voided_by, now):
        voucher = await voucher_store.get_by_id(db, tenant_id, voucher_id)
        await voucher_store.commit(db)
        logger.info(f"券 {voucher.code} 已被 {voided_by} 作废")
        return VoidResult(success=True, voucher=to_voucher_read(voucher, now))

    await db.rollback()
    voucher = await voucher_store.get_by_id(db, tenant_id, voucher_id)
    reason = evaluate(voucher, tenant_id, now)

    if reason == ValidationReason.NOT_FOUND:
        return VoidResult(success=False, error_code=ErrorCode.NOT_FOUND.value, error="Voucher not found")
    if reason in (ValidationReason.REDEEMED, ValidationReason.LIMIT_REACHED):
        return VoidResult(
            success=False,
            error_code="ALREADY_REDEEMED",
            error="Voucher has already been redeemed",
        )
    if reason == ValidationReason.EXPIRED:
        return VoidResult(success=False, error_code=ErrorCode.EXPIRED.value, error="Voucher has already expired")
    if reason == ValidationReason.VOIDED:
        return VoidResult(success=False, error_code=ErrorCode.VOIDED.value, error="Voucher is already voided")

    logger.warning(f"作废条件未命中但复查可用: voucher={voucher_id}")
    return VoidResult(success=False, error="Void could not be completed, please retry")
