"""ORM 模型导出集合。"""

from ficrec_api.models.catalog import SeriesRecord, WorkRecord
from ficrec_api.models.lock import AppConfig, FieldLock
from ficrec_api.models.queue import IngestionJob, QueueSubscriber

__all__ = [
    "AppConfig",
    "FieldLock",
    "IngestionJob",
    "QueueSubscriber",
    "SeriesRecord",
    "WorkRecord",
]
