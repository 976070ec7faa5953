"""
SpinWin 券核销服务 - 后端服务入口
"""
from fastapi import FastAPI, Request, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.openapi.docs import get_swagger_ui_html, get_redoc_html
from contextlib import asynccontextmanager
from spinwin.core.config import get_settings
from spinwin.core.database import init_db
from spinwin.core.exceptions import StoreUnavailableError, VoucherCodeGenerationError
from spinwin.core.security import get_current_admin
from spinwin.api import api_router
from spinwin.services.scheduler import start_scheduler, stop_scheduler
import logging
import os

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时
    logger.info("🚀 正在启动 SpinWin 券核销服务...")

    # 初始化数据库
    await init_db()
    logger.info("✅ 数据库初始化完成")

    # 启动定时任务
    start_scheduler()
    logger.info("✅ 定时任务已启动")

    yield

    # 关闭时
    stop_scheduler()
    logger.info("👋 服务已关闭")


# 创建 FastAPI 应用
app = FastAPI(
    title="SpinWin 券核销服务",
    description="转盘抽奖券的发放、验券、核销与管理",
    version="1.0.0",
    lifespan=lifespan,
    # 禁用默认文档路由（由下方自定义路由接管，并增加密码保护）
    docs_url=None,
    redoc_url=None,
    openapi_url=None
)

# 配置 CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- 基础设施故障 ---
# 详细原因只写日志，不返回给调用方

@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.exception(f"存储不可用: {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable, please try again later"},
    )


@app.exception_handler(VoucherCodeGenerationError)
async def code_generation_handler(request: Request, exc: VoucherCodeGenerationError):
    logger.exception(f"券码生成失败: {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Failed to create voucher"},
    )


# 注册路由 (API)
app.include_router(api_router)

# 挂载二维码图片目录
os.makedirs(settings.qr_storage_path, exist_ok=True)
app.mount(settings.qr_public_base_url, StaticFiles(directory=settings.qr_storage_path), name="qr")


# --- 路由：文档安全保护 ---
# 只有通过 Basic Auth 的管理员才能看到文档

@app.get("/docs", include_in_schema=False)
async def get_swagger_documentation(username: str = Depends(get_current_admin)):
    """受保护的 Swagger UI"""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="API 文档 - SpinWin 券核销")

@app.get("/redoc", include_in_schema=False)
async def get_redoc_documentation(username: str = Depends(get_current_admin)):
    """受保护的 ReDoc"""
    return get_redoc_html(openapi_url="/openapi.json", title="API 文档 - SpinWin 券核销")

@app.get("/openapi.json", include_in_schema=False)
async def get_open_api_endpoint(username: str = Depends(get_current_admin)):
    """受保护的 OpenAPI Schema"""
    return app.openapi()


@app.get("/")
async def root():
    """健康检查"""
    return {
        "service": "SpinWin 券核销服务",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """健康检查端点"""
    return {"status": "healthy"}
