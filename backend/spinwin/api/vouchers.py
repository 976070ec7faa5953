"""
券相关 API
发券（转盘子系统调用）、验券、核销、按手机号查券、管理端列表与导出
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pydantic import BaseModel
from datetime import datetime
from typing import List, Literal, Optional
from spinwin.core.config import get_settings
from spinwin.core.database import get_db, get_session_factory
from spinwin.core.exceptions import InvalidVoucherReferenceError, SpinConflictError
from spinwin.core.security import verify_rate_limiter
from spinwin.core.timeutil import utcnow
from spinwin.schemas import (
    CreateVoucherParams,
    PhoneLookupItem,
    Pagination,
    RedemptionResult,
    ValidationResult,
    VoucherFilters,
    VoucherRead,
    VoucherStats,
)
from spinwin.services import voucher_store
from spinwin.services.code_generator import normalize_code, is_valid_code
from spinwin.services.redemption import redeem_voucher
from spinwin.services.validation import classify
from spinwin.services.voucher_query import (
    export_vouchers_csv,
    get_voucher_stats,
    get_vouchers,
    get_vouchers_by_phone,
    to_voucher_read,
)
from spinwin.services.voucher_service import (
    create_voucher,
    deliver_new_voucher,
    deliver_redemption_confirmation,
)
import logging
import re

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/vouchers", tags=["券"])

_PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9 \-]{3,19}$")


class ValidateRequest(BaseModel):
    """验券请求体"""
    code: str
    tenant_id: Optional[str] = None


class RedeemRequest(BaseModel):
    """核销请求体"""
    code: str
    merchant_id: str
    tenant_id: Optional[str] = None


class LookupPhoneRequest(BaseModel):
    """按手机号查券请求体"""
    phone: str
    tenant_id: Optional[str] = None


class LookupPhoneResponse(BaseModel):
    vouchers: List[PhoneLookupItem]


class IssueVoucherResponse(BaseModel):
    """发券响应：奖品未配置有效期时 issued=False 且 voucher 为空"""
    issued: bool
    voucher: Optional[VoucherRead] = None


class VoucherListPage(BaseModel):
    vouchers: List[VoucherRead]
    stats: VoucherStats
    pagination: Pagination


def resolve_tenant(tenant_id: Optional[str], header_tenant_id: Optional[str]) -> str:
    """租户 ID：请求体/查询参数优先，其次 X-Tenant-Id 头"""
    tenant = (tenant_id or header_tenant_id or "").strip()
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant ID is required"
        )
    return tenant


def require_code(code: str) -> str:
    code = normalize_code(code or "")
    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Voucher code is required"
        )
    if not is_valid_code(code):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid voucher code format"
        )
    return code


def build_filters(
    status_filter: Optional[str],
    search: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    page: int,
    limit: int,
) -> VoucherFilters:
    if status_filter not in (None, "all", "active", "redeemed", "expired"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")
    if page < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid page number")
    if limit < 1 or limit > settings.voucher_max_page_size:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid limit (must be between 1 and {settings.voucher_max_page_size})"
        )
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_date must not be after end_date")
    return VoucherFilters(
        status=status_filter or "all",
        search=search or None,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )


@router.post("", response_model=IssueVoucherResponse)
async def issue_voucher(
    params: CreateVoucherParams,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """
    发券（中奖后由转盘子系统调用）

    - 奖品有效期为 0/未配置：不发券，issued=False
    - 同一 spin 重复调用：返回已有券，不重复通知
    - 奖品/顾客不存在：400；spin 已属于其他租户：409
    - 新券：后台生成二维码（可选）并发送 WhatsApp 通知
    """
    existing = await voucher_store.get_by_spin(db, params.tenant_id, params.spin_id)
    if existing is not None:
        return IssueVoucherResponse(issued=True, voucher=to_voucher_read(existing, utcnow()))

    try:
        voucher = await create_voucher(db, params)
    except InvalidVoucherReferenceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SpinConflictError as e:
        logger.warning(f"发券被拒绝: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if voucher is None:
        return IssueVoucherResponse(issued=False)

    background_tasks.add_task(
        deliver_new_voucher,
        session_factory,
        voucher.id,
        voucher.tenant_id,
        voucher.code,
        voucher.prize.name,
        voucher.expires_at,
        voucher.customer.phone,
        params.generate_qr,
    )
    return IssueVoucherResponse(issued=True, voucher=to_voucher_read(voucher, utcnow()))


@router.post("/validate", response_model=ValidationResult)
async def validate_voucher(
    request: ValidateRequest,
    x_tenant_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_rate_limiter)
):
    """
    验券（不核销）

    无论券是否可用都返回 200，结论在 valid / reason 字段中
    """
    tenant_id = resolve_tenant(request.tenant_id, x_tenant_id)
    code = require_code(request.code)

    target = await voucher_store.lookup_for_validation(db, tenant_id, code)
    return classify(target, tenant_id, utcnow())


@router.post("/redeem", response_model=RedemptionResult)
async def redeem(
    request: RedeemRequest,
    background_tasks: BackgroundTasks,
    x_tenant_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_rate_limiter)
):
    """
    核销

    成功返回 200；过期、已核销、次数用完、不存在返回 400，并附带具体原因
    """
    tenant_id = resolve_tenant(request.tenant_id, x_tenant_id)
    code = require_code(request.code)
    merchant_id = request.merchant_id.strip()
    if not merchant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Merchant ID is required"
        )

    result = await redeem_voucher(db, code, merchant_id, tenant_id)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=result.model_dump(mode="json"),
        )

    v = result.voucher
    background_tasks.add_task(
        deliver_redemption_confirmation,
        v.customer.phone,
        v.code,
        v.prize.name,
        v.redemption_count,
        v.redemption_limit,
    )
    return result


@router.post("/lookup-phone", response_model=LookupPhoneResponse)
async def lookup_phone(
    request: LookupPhoneRequest,
    x_tenant_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_rate_limiter)
):
    """按顾客手机号查本租户的券（无结果返回空列表）"""
    tenant_id = resolve_tenant(request.tenant_id, x_tenant_id)
    phone = request.phone.strip()
    if phone and not _PHONE_PATTERN.match(phone):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid phone number"
        )

    vouchers = await get_vouchers_by_phone(db, phone, tenant_id)
    return LookupPhoneResponse(vouchers=vouchers)


@router.get("", response_model=VoucherListPage)
async def list_vouchers(
    tenant_id: Optional[str] = Query(None),
    status_filter: Optional[Literal["all", "active", "redeemed", "expired"]] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1),
    limit: int = Query(settings.voucher_default_page_size),
    x_tenant_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """管理端券列表（含统计与分页）"""
    tenant = resolve_tenant(tenant_id, x_tenant_id)
    filters = build_filters(status_filter, search, start_date, end_date, page, limit)

    result = await get_vouchers(db, tenant, filters)
    stats = await get_voucher_stats(db, tenant)
    return VoucherListPage(vouchers=result.vouchers, stats=stats, pagination=result.pagination)


@router.get("/export")
async def export_vouchers(
    tenant_id: Optional[str] = Query(None),
    status_filter: Optional[Literal["all", "active", "redeemed", "expired"]] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    x_tenant_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """按列表筛选条件导出 CSV（不分页，超过上限时 X-Export-Truncated: true）"""
    tenant = resolve_tenant(tenant_id, x_tenant_id)
    filters = build_filters(status_filter, search, start_date, end_date, 1, 1)

    export = await export_vouchers_csv(db, tenant, filters, max_rows=settings.voucher_export_max_rows)
    filename = f"vouchers-{utcnow():%Y-%m-%d}.csv"
    return Response(
        content=export.content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Export-Total": str(export.total),
            "X-Export-Truncated": "true" if export.truncated else "false",
        },
    )
