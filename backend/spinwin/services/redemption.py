"""
券核销
核销只依赖存储层的一条原子条件更新：并发请求中先提交的生效，其余请求看到更新后的行而失败。
失败时再读取一次券做诊断，给出具体原因；诊断读取不参与正确性保证。
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from spinwin.core.timeutil import utcnow, to_naive_utc
from spinwin.schemas import RedemptionResult, ValidationReason
from spinwin.services import voucher_store
from spinwin.services.validation import classify, error_code_for, failure_message
from spinwin.services.voucher_query import to_voucher_read
import logging

logger = logging.getLogger(__name__)


async def redeem_voucher(
    db: AsyncSession,
    code: str,
    merchant_id: str,
    tenant_id: str,
    now: Optional[datetime] = None,
) -> RedemptionResult:
    """
    核销一张券

    过期、已核销、次数用完、不存在都以 success=False 返回；
    只有存储不可用时抛出 StoreUnavailableError。
    """
    now = to_naive_utc(now) or utcnow()

    # 事务的第一条语句就是条件更新，先拿到写锁再读行
    updated = await voucher_store.conditional_redeem(db, tenant_id, code, merchant_id, now)

    if updated is None:
        await db.rollback()
        target = await voucher_store.lookup_for_validation(db, tenant_id, code)
        diagnosis = classify(target, tenant_id, now)

        if diagnosis.valid:
            # 条件更新未命中但诊断读取显示可用，说明期间状态发生了变化
            logger.warning(f"核销条件未命中但复查可用: code={code}, tenant={tenant_id}")
            return RedemptionResult(
                success=False,
                error="Redemption could not be completed, please retry",
            )

        logger.info(f"核销失败: code={code}, tenant={tenant_id}, reason={diagnosis.reason.value}")
        return RedemptionResult(
            success=False,
            error=failure_message(diagnosis),
            error_code=error_code_for(diagnosis.reason).value,
            reason=diagnosis.reason,
            details=diagnosis.details if diagnosis.reason not in (
                ValidationReason.NOT_FOUND, ValidationReason.WRONG_TENANT
            ) else None,
        )

    voucher_id, new_count = updated
    await voucher_store.record_redemption(db, voucher_id, tenant_id, merchant_id, new_count, now)

    # 仍在同一事务内（持有写锁），读到的就是本次更新后的行
    voucher = await voucher_store.get_by_id(db, tenant_id, voucher_id)
    await voucher_store.commit(db)

    logger.info(
        f"券 {code} 核销成功 ({new_count}/{voucher.redemption_limit})，商户 {merchant_id}"
    )
    return RedemptionResult(success=True, voucher=to_voucher_read(voucher, now))
