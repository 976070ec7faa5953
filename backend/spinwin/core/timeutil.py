"""
时间工具
数据库中统一保存不带时区的 UTC 时间（SQLite 不保存时区信息）
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """当前 UTC 时间（naive）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """带时区的时间转换为 naive UTC，naive 时间视为已是 UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
