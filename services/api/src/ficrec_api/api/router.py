"""顶层路由注册。"""

from fastapi import APIRouter

from . import health, locks, queue, works

api_router = APIRouter()

# 固定注册顺序，便于在线接口文档展示和问题定位。
api_router.include_router(health.router)
api_router.include_router(queue.router)
api_router.include_router(locks.router)
api_router.include_router(works.router)
