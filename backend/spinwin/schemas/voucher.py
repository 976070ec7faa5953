"""
券服务的结果与视图模型
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Literal, Optional
import enum


class ValidationReason(str, enum.Enum):
    """券不可用的原因"""
    NOT_FOUND = "not_found"
    WRONG_TENANT = "wrong_tenant"
    EXPIRED = "expired"
    VOIDED = "voided"
    REDEEMED = "redeemed"
    LIMIT_REACHED = "limit_reached"


class VoucherStatus(str, enum.Enum):
    """券的展示状态（实时计算，不落库）"""
    ACTIVE = "active"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class PrizeInfo(BaseModel):
    name: str
    description: Optional[str] = None


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    phone: str


class VoucherSnapshot(BaseModel):
    """验券成功时给店员看的信息"""
    code: str
    prize: PrizeInfo
    customer: CustomerInfo
    expires_at: datetime
    redemption_count: int
    redemption_limit: int


class ValidationDetails(BaseModel):
    expires_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    redeemed_by: Optional[str] = None
    voided_at: Optional[datetime] = None


class ValidationResult(BaseModel):
    """验券结果"""
    valid: bool
    voucher: Optional[VoucherSnapshot] = None
    reason: Optional[ValidationReason] = None
    details: Optional[ValidationDetails] = None


class VoucherRead(BaseModel):
    """券完整视图（列表、核销结果）"""
    id: str
    code: str
    tenant_id: str
    spin_id: str
    prize_id: str
    user_id: str
    prize: PrizeInfo
    customer: CustomerInfo
    status: VoucherStatus
    created_at: datetime
    expires_at: datetime
    redemption_count: int
    redemption_limit: int
    is_redeemed: bool
    redeemed_at: Optional[datetime] = None
    redeemed_by: Optional[str] = None
    voided_at: Optional[datetime] = None
    qr_image_url: Optional[str] = None


class RedemptionResult(BaseModel):
    """核销结果：业务失败（过期、已核销等）也通过 success=False 返回"""
    success: bool
    voucher: Optional[VoucherRead] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    reason: Optional[ValidationReason] = None
    details: Optional[ValidationDetails] = None


class PhoneLookupItem(BaseModel):
    """按手机号查券的单条结果"""
    code: str
    prize: PrizeInfo
    status: VoucherStatus
    expires_at: datetime
    created_at: datetime
    redemption_count: int
    redemption_limit: int
    qr_image_url: Optional[str] = None


class VoucherFilters(BaseModel):
    """管理端列表筛选条件（页码/每页数量的合法性由接口层校验）"""
    status: Literal["all", "active", "redeemed", "expired"] = "all"
    search: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = 1
    limit: int = 50


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class VoucherListResponse(BaseModel):
    vouchers: List[VoucherRead]
    pagination: Pagination


class VoucherStats(BaseModel):
    total: int = 0
    active: int = 0
    redeemed: int = 0
    expired: int = 0


class CreateVoucherParams(BaseModel):
    """转盘子系统发起的发券参数"""
    spin_id: str = Field(..., min_length=1, max_length=64)
    prize_id: str = Field(..., min_length=1, max_length=36)
    user_id: str = Field(..., min_length=1, max_length=36)
    tenant_id: str = Field(..., min_length=1, max_length=64)
    tenant_slug: str = Field(..., min_length=1, max_length=64)
    validity_days: Optional[int] = None
    redemption_limit: int = Field(1, gt=0)
    generate_qr: bool = True


class VoidResult(BaseModel):
    """作废结果"""
    success: bool
    voucher: Optional[VoucherRead] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
