"""
安全防护模块
用于处理限流、管理员认证等安全逻辑
"""
from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from collections import defaultdict
from spinwin.core.config import get_settings
import secrets
import time
import logging

logger = logging.getLogger(__name__)

# 内存限流存储
# 结构: { "ip_address": [timestamp1, timestamp2, ...] }
# 注意: 多进程/分布式部署时各进程独立计数
_request_records = defaultdict(list)


async def verify_rate_limiter(request: Request):
    """
    验券/核销/查券接口限流依赖
    防止暴力枚举券码
    """
    settings = get_settings()
    window = settings.rate_limit_window_seconds
    max_attempts = settings.rate_limit_max_attempts

    client_ip = request.client.host if request.client else "unknown"

    now = time.time()
    history = _request_records[client_ip]

    # 1. 清理窗口期的旧记录
    while history and history[0] < now - window:
        history.pop(0)

    # 2. 检查是否超限
    if len(history) >= max_attempts:
        logger.warning(f"安全警告: IP {client_ip} 触发券码接口限流")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many attempts, please wait {window} seconds and try again"
        )

    # 3. 记录本次请求
    history.append(now)
    return True


def reset_rate_limiter():
    """清空限流记录"""
    _request_records.clear()


# --- 管理员认证 ---

security = HTTPBasic()


def get_current_admin(credentials: HTTPBasicCredentials = Depends(security)):
    """
    管理员认证依赖
    使用 HTTP Basic Auth
    """
    settings = get_settings()

    # 使用 secrets.compare_digest 防止时序攻击
    is_username_correct = secrets.compare_digest(
        credentials.username.encode("utf-8"), settings.admin_username.encode("utf-8")
    )
    is_password_correct = secrets.compare_digest(
        credentials.password.encode("utf-8"), settings.admin_password.encode("utf-8")
    )

    if not (is_username_correct and is_password_correct):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin authentication failed",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username
