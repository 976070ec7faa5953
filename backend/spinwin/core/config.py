"""
应用配置模块
使用 pydantic-settings 从环境变量加载配置
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    """应用配置类"""

    # 数据库
    database_url: str = "sqlite+aiosqlite:///./data/spinwin.db"

    # 服务器
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # 管理员配置 (HTTP Basic Auth，用于作废券等管理接口)
    admin_username: str = "admin"
    admin_password: str = "admin888"  # 生产环境请修改！

    # 券码生成
    voucher_code_max_attempts: int = 5

    # 列表与导出
    voucher_default_page_size: int = 50
    voucher_max_page_size: int = 100
    voucher_export_max_rows: int = 10000

    # 二维码图片
    qr_storage_path: str = "./data/qr"
    qr_public_base_url: str = "/api/qr"
    qr_backfill_interval_minutes: int = 10
    qr_backfill_batch_size: int = 50

    # WhatsApp 通知
    whatsapp_api_url: str = ""
    whatsapp_api_key: str = ""
    whatsapp_sender: str = ""
    whatsapp_country_code: str = "91"
    whatsapp_timeout_seconds: float = 10.0

    # 核销/验券接口限流（防止暴力枚举券码）
    rate_limit_window_seconds: int = 60
    rate_limit_max_attempts: int = 30

    @property
    def cors_origins_list(self) -> List[str]:
        """将逗号分隔的 CORS 源转换为列表"""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例（带缓存）"""
    return Settings()
