"""
管理员 API
"""
from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from spinwin.core.database import get_db
from spinwin.core.exceptions import ErrorCode
from spinwin.core.security import get_current_admin
from spinwin.schemas import VoidResult
from spinwin.services.voucher_service import void_voucher
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["管理"])


@router.put("/vouchers/{voucher_id}/void", response_model=VoidResult)
async def void_by_admin(
    voucher_id: str,
    tenant_id: Optional[str] = Query(None),
    x_tenant_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    """
    作废券（需要管理员认证）

    已核销完、已过期或已作废的券不能作废，返回 400；券不存在返回 404
    """
    tenant = (tenant_id or x_tenant_id or "").strip()
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant ID is required"
        )

    result = await void_voucher(db, voucher_id, tenant, voided_by=admin)
    if result.success:
        return result

    code = status.HTTP_404_NOT_FOUND if result.error_code == ErrorCode.NOT_FOUND.value else status.HTTP_400_BAD_REQUEST
    logger.info(f"作废失败 {voucher_id}: {result.error_code}")
    return JSONResponse(status_code=code, content=result.model_dump(mode="json"))
