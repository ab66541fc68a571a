"""请求上下文依赖。

职责:
1. 校验命令层携带的服务令牌。
2. 解析操作者标识与权限等级。
3. 提供进程内共享的全局锁策略缓存。
"""

from dataclasses import dataclass
import hmac

from fastapi import Depends, Header, HTTPException, Request, status

from ficrec_api.core.config import get_settings
from ficrec_api.models.enums import ActorTier
from ficrec_api.services.locks import GlobalLockPolicyCache
from ficrec_api.services.permissions import normalize_tier, require_tier


@dataclass
class ActorContext:
    """操作者上下文。

    聊天平台侧的身份认证由命令层完成，这里只信任持有服务令牌的调用方转发的身份。
    """

    # 外部聊天平台用户 ID。
    actor_id: str
    # 操作者权限等级。
    tier: ActorTier


def verify_service_token(
    x_service_token: str | None = Header(default=None, alias="X-Service-Token", description="命令层服务令牌。"),
) -> None:
    """校验服务令牌，使用常量时间比较。"""
    expected = get_settings().service_token
    if not x_service_token or not hmac.compare_digest(x_service_token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid service token")


def get_actor_context(
    _: None = Depends(verify_service_token),
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id", description="操作者外部用户 ID。"),
    x_actor_tier: str | None = Header(default=None, alias="X-Actor-Tier", description="操作者权限等级。"),
) -> ActorContext:
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail={
                "code": "ACTOR_REQUIRED",
                "message": "缺少操作者标识。",
                "details": {"reason": "missing_actor_id", "suggestion": "请在请求头携带 X-Actor-Id。"},
            },
        )
    return ActorContext(actor_id=actor_id[:64], tier=normalize_tier(x_actor_tier))


def require_mod_context(ctx: ActorContext = Depends(get_actor_context)) -> ActorContext:
    require_tier(ctx.tier, ActorTier.MOD)
    return ctx


def require_superadmin_context(ctx: ActorContext = Depends(get_actor_context)) -> ActorContext:
    require_tier(ctx.tier, ActorTier.SUPERADMIN)
    return ctx


def get_lock_policy_cache(request: Request) -> GlobalLockPolicyCache:
    """返回应用级全局锁策略缓存。"""
    return request.app.state.lock_policy_cache
