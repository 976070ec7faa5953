"""
验券判定
纯函数：只根据券快照、请求租户和当前时间给出结论，不读写数据库。
核销失败诊断、列表状态计算都复用这里的判定。
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from spinwin.core.exceptions import ErrorCode
from spinwin.core.timeutil import to_naive_utc
from spinwin.schemas import (
    ValidationReason,
    VoucherStatus,
    PrizeInfo,
    CustomerInfo,
    VoucherSnapshot,
    ValidationDetails,
    ValidationResult,
)


@dataclass(frozen=True)
class ForeignVoucher:
    """券码存在但属于其他租户：只保留归属，不加载任何内容"""
    code: str
    tenant_id: str


_REASON_TO_STATUS = {
    None: VoucherStatus.ACTIVE,
    ValidationReason.REDEEMED: VoucherStatus.REDEEMED,
    ValidationReason.LIMIT_REACHED: VoucherStatus.REDEEMED,
    ValidationReason.EXPIRED: VoucherStatus.EXPIRED,
    ValidationReason.VOIDED: VoucherStatus.EXPIRED,
}

_REASON_TO_ERROR_CODE = {
    ValidationReason.NOT_FOUND: ErrorCode.NOT_FOUND,
    ValidationReason.WRONG_TENANT: ErrorCode.WRONG_TENANT,
    ValidationReason.EXPIRED: ErrorCode.EXPIRED,
    ValidationReason.VOIDED: ErrorCode.VOIDED,
    ValidationReason.REDEEMED: ErrorCode.LIMIT_REACHED,
    ValidationReason.LIMIT_REACHED: ErrorCode.LIMIT_REACHED,
}


def evaluate(voucher, tenant_id: str, now: datetime) -> Optional[ValidationReason]:
    """
    判定券当前是否可用，可用返回 None，否则返回原因

    判定顺序（命中即返回）：
    1. 券不存在 -> not_found
    2. 不属于请求租户 -> wrong_tenant
    3. 次数未用完但已作废 -> voided
    4. 次数未用完但已过期（now >= expires_at） -> expired
    5. 次数已用完 -> 单次券 redeemed，多次券 limit_reached
    """
    if voucher is None:
        return ValidationReason.NOT_FOUND

    if voucher.tenant_id != tenant_id:
        return ValidationReason.WRONG_TENANT

    now = to_naive_utc(now)
    exhausted = voucher.redemption_count >= voucher.redemption_limit

    if not exhausted:
        if voucher.voided_at is not None:
            return ValidationReason.VOIDED
        if now >= voucher.expires_at:
            return ValidationReason.EXPIRED
        return None

    if voucher.redemption_limit > 1 or not voucher.is_redeemed:
        return ValidationReason.LIMIT_REACHED
    return ValidationReason.REDEEMED


def classify(voucher, tenant_id: str, now: datetime) -> ValidationResult:
    """验券：返回结构化结果，可用时附带顾客/奖品信息"""
    reason = evaluate(voucher, tenant_id, now)

    if reason in (ValidationReason.NOT_FOUND, ValidationReason.WRONG_TENANT):
        # 不透露其他租户券的任何信息
        return ValidationResult(valid=False, reason=reason)

    if reason == ValidationReason.VOIDED:
        return ValidationResult(
            valid=False,
            reason=reason,
            details=ValidationDetails(voided_at=voucher.voided_at),
        )

    if reason == ValidationReason.EXPIRED:
        return ValidationResult(
            valid=False,
            reason=reason,
            details=ValidationDetails(expires_at=voucher.expires_at),
        )

    if reason is not None:
        return ValidationResult(
            valid=False,
            reason=reason,
            details=ValidationDetails(
                redeemed_at=voucher.redeemed_at,
                redeemed_by=voucher.redeemed_by,
            ),
        )

    return ValidationResult(
        valid=True,
        voucher=VoucherSnapshot(
            code=voucher.code,
            prize=PrizeInfo(name=voucher.prize.name, description=voucher.prize.description),
            customer=CustomerInfo(name=voucher.customer.name, phone=voucher.customer.phone),
            expires_at=voucher.expires_at,
            redemption_count=voucher.redemption_count,
            redemption_limit=voucher.redemption_limit,
        ),
    )


def compute_status(voucher, now: datetime) -> VoucherStatus:
    """列表展示状态：active / redeemed / expired（作废视为 expired）"""
    return _REASON_TO_STATUS[evaluate(voucher, voucher.tenant_id, now)]


def error_code_for(reason: Optional[ValidationReason]) -> Optional[ErrorCode]:
    if reason is None:
        return None
    return _REASON_TO_ERROR_CODE[reason]


def failure_message(result: ValidationResult) -> str:
    """给店员看的失败说明，带上过期日期或核销时间以便现场解释"""
    details = result.details or ValidationDetails()
    reason = result.reason

    if reason == ValidationReason.NOT_FOUND:
        return "Voucher not found"
    if reason == ValidationReason.WRONG_TENANT:
        return "Invalid voucher"
    if reason == ValidationReason.EXPIRED:
        if details.expires_at:
            return f"Voucher expired on {details.expires_at:%Y-%m-%d}"
        return "Voucher expired"
    if reason == ValidationReason.VOIDED:
        return "Voucher has been voided"
    if reason == ValidationReason.REDEEMED:
        if details.redeemed_at:
            return f"Voucher already redeemed on {details.redeemed_at:%Y-%m-%d %H:%M} UTC"
        return "Voucher already redeemed"
    if reason == ValidationReason.LIMIT_REACHED:
        return "Voucher redemption limit reached"
    return "Validation failed"
