"""领域异常定义。

服务层抛出领域异常，由接口层统一转换为错误响应；工作进程直接捕获处理。
"""

from typing import Any


class CatalogError(Exception):
    """领域异常基类。"""

    code = "CATALOG_ERROR"
    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnsupportedSubjectError(CatalogError):
    """链接不是可入库的作品或系列。"""

    code = "UNSUPPORTED_SUBJECT"
    status_code = 422


class JobNotFoundError(CatalogError):
    code = "JOB_NOT_FOUND"
    status_code = 404


class RecordNotFoundError(CatalogError):
    code = "RECORD_NOT_FOUND"
    status_code = 404


class InvalidJobStateError(CatalogError):
    """任务当前状态不允许该操作。"""

    code = "INVALID_JOB_STATE"
    status_code = 409


class LockNotFoundError(CatalogError):
    code = "LOCK_NOT_FOUND"
    status_code = 404


class InsufficientTierError(CatalogError):
    """操作者权限等级不足。"""

    code = "INSUFFICIENT_TIER"
    status_code = 403
