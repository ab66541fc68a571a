"""运行时键值配置读写。"""

from sqlalchemy.orm import Session

from ficrec_api.core.config import get_settings
from ficrec_api.models.lock import AppConfig

GLOBAL_LOCKED_FIELDS_KEY = "global_locked_fields"
AUTOMATED_WRITERS_RESPECT_KEY = "automated_writers_respect_global_locks"
INSTANT_SUPPRESS_THRESHOLD_KEY = "instant_queue_suppress_threshold_ms"


def get_config_value(db: Session, key: str) -> str | None:
    row = db.get(AppConfig, key)
    return row.value if row else None


def set_config_value(db: Session, key: str, value: str) -> None:
    """写入或覆盖配置项。"""
    row = db.get(AppConfig, key)
    if row:
        row.value = value
    else:
        db.add(AppConfig(key=key, value=value))
    db.flush()


def get_instant_suppress_threshold_ms(db: Session) -> int:
    """读取即时任务静默阈值，非法或缺失时回退到配置默认值。"""
    raw = get_config_value(db, INSTANT_SUPPRESS_THRESHOLD_KEY)
    if raw is not None:
        try:
            value = int(raw.strip())
        except ValueError:
            value = -1
        if value >= 0:
            return value
    return get_settings().instant_suppress_threshold_ms
