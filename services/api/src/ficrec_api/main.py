"""FastAPI 应用入口点。"""

from fastapi import FastAPI

from ficrec_api.core.config import get_settings
from ficrec_api.exceptions import register_exception_handlers
from ficrec_api.middlewares import register_middlewares
from ficrec_api.api.router import api_router
from ficrec_api.services.locks import GlobalLockPolicyCache

settings = get_settings()


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        description=(
            "推荐文目录入库接口。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "调用方需携带 `X-Service-Token`，并通过 `X-Actor-Id` / `X-Actor-Tier` 转发操作者身份。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "queue", "description": "入库任务提交、查询、豁免重新入队与卡住任务重置。"},
            {"name": "locks", "description": "字段锁、准入豁免与全局锁策略维护。"},
            {"name": "works", "description": "作品记录手工编辑。"},
        ],
    )
    # 全局锁策略缓存随应用实例创建，测试中每个应用实例互不影响。
    app.state.lock_policy_cache = GlobalLockPolicyCache()

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
