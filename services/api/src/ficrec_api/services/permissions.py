"""操作者权限等级判定。"""

from ficrec_api.core.errors import InsufficientTierError
from ficrec_api.models.enums import ActorTier

# 自动化入库固定使用的等级，不享有绕过字段锁的特权。
AUTOMATED_WRITER_TIER = ActorTier.MEMBER

_TIER_RANK: dict[str, int] = {
    ActorTier.NON_MEMBER: 0,
    ActorTier.MEMBER: 1,
    ActorTier.MOD: 2,
    ActorTier.ADMIN: 3,
    ActorTier.SUPERADMIN: 4,
}


def normalize_tier(value: str | None) -> ActorTier:
    """将外部传入的等级字符串规范化，未知值按 member 处理。"""
    normalized = (value or "").strip().lower()
    try:
        return ActorTier(normalized)
    except ValueError:
        return ActorTier.MEMBER


def tier_rank(tier: str) -> int:
    return _TIER_RANK[normalize_tier(tier)]


def bypasses_field_locks(tier: str) -> bool:
    """高于 member 的等级不受字段锁约束。"""
    return tier_rank(tier) > _TIER_RANK[ActorTier.MEMBER]


def require_tier(actor_tier: str, minimum: ActorTier) -> None:
    """校验操作者等级不低于要求等级。"""
    if tier_rank(actor_tier) < _TIER_RANK[minimum]:
        raise InsufficientTierError(
            f"requires tier {minimum.value} or above",
            details={"actor_tier": str(actor_tier), "required_tier": minimum.value},
        )
