"""
API 路由注册
"""
from fastapi import APIRouter
from spinwin.api.vouchers import router as vouchers_router
from spinwin.api.admin import router as admin_router

api_router = APIRouter(prefix="/api")

# 注册子路由
api_router.include_router(vouchers_router)
api_router.include_router(admin_router)
