"""时间工具。"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """返回带时区的当前 UTC 时间。"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """部分数据库驱动返回无时区时间，统一按 UTC 解释。"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
