"""路由模块导出集合。"""

from . import health, locks, queue, works

__all__ = [
    "health",
    "locks",
    "queue",
    "works",
]
