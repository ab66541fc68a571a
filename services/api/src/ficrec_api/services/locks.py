"""字段锁判定与维护。

判定顺序:
1) 操作者等级高于 member 时直接放行
2) 主体（含所属系列）存在该字段或 ALL 的有效锁时拦截
3) 字段位于全局锁策略、自动写入需遵守全局锁、且当前值非空时拦截
4) 其余情况放行
"""

from collections.abc import Iterable
from dataclasses import dataclass
from threading import Lock
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ficrec_api.core.errors import InsufficientTierError, LockNotFoundError
from ficrec_api.models.catalog import WorkRecord
from ficrec_api.models.enums import SubjectKind
from ficrec_api.models.lock import ALL_FIELDS, VALIDATION_OVERRIDE_FIELD, FieldLock
from ficrec_api.services.permissions import bypasses_field_locks, normalize_tier, tier_rank
from ficrec_api.services.runtime_config import (
    AUTOMATED_WRITERS_RESPECT_KEY,
    GLOBAL_LOCKED_FIELDS_KEY,
    get_config_value,
    set_config_value,
)
from ficrec_api.services.subjects import subject_key
from ficrec_api.utils.clock import utc_now


@dataclass(frozen=True)
class GlobalLockPolicy:
    """全局锁策略快照。"""

    fields: frozenset[str] = frozenset()
    automated_writers_respect: bool = True


def load_global_lock_policy(db: Session) -> GlobalLockPolicy:
    """从运行时配置读取全局锁策略。"""
    raw_fields = get_config_value(db, GLOBAL_LOCKED_FIELDS_KEY) or ""
    raw_respect = get_config_value(db, AUTOMATED_WRITERS_RESPECT_KEY)
    fields = frozenset(item.strip() for item in raw_fields.split(",") if item.strip())
    respect = (raw_respect or "true").strip().lower() == "true"
    return GlobalLockPolicy(fields=fields, automated_writers_respect=respect)


class GlobalLockPolicyCache:
    """进程内全局锁策略缓存，策略变更后需显式 invalidate。"""

    def __init__(self) -> None:
        self._policy: GlobalLockPolicy | None = None
        self._lock = Lock()

    def get(self, db: Session) -> GlobalLockPolicy:
        with self._lock:
            if self._policy is None:
                self._policy = load_global_lock_policy(db)
            return self._policy

    def invalidate(self) -> None:
        with self._lock:
            self._policy = None


def is_unset(value: Any) -> bool:
    """判断字段当前值是否为空。"""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class ResolvedLocks:
    """某主体已解析的锁集合，合并时逐字段查询。"""

    fields: frozenset[str]
    policy: GlobalLockPolicy

    def is_locked(self, field: str, actor_tier: str, current_value: Any = None) -> bool:
        if bypasses_field_locks(actor_tier):
            return False
        if field in self.fields or ALL_FIELDS in self.fields:
            return True
        if field in self.policy.fields and self.policy.automated_writers_respect and not is_unset(current_value):
            return True
        return False


class LockResolver:
    """按主体键解析字段锁。"""

    def __init__(self, db: Session, policy_cache: GlobalLockPolicyCache):
        self.db = db
        self.policy_cache = policy_cache

    def resolve(self, subject_keys: Iterable[str]) -> ResolvedLocks:
        keys = sorted({key for key in subject_keys if key})
        fields: set[str] = set()
        if keys:
            fields.update(
                self.db.execute(
                    select(FieldLock.field)
                    .where(FieldLock.subject_key.in_(keys))
                    .where(FieldLock.locked.is_(True))
                    .where(FieldLock.field != VALIDATION_OVERRIDE_FIELD)
                ).scalars()
            )
        return ResolvedLocks(fields=frozenset(fields), policy=self.policy_cache.get(self.db))

    def is_locked(
        self,
        subject_keys: str | Iterable[str],
        field: str,
        actor_tier: str,
        current_value: Any = None,
    ) -> bool:
        """单字段判定入口。"""
        # 特权等级无需查库。
        if bypasses_field_locks(actor_tier):
            return False
        keys = [subject_keys] if isinstance(subject_keys, str) else list(subject_keys)
        return self.resolve(keys).is_locked(field, actor_tier, current_value)


def work_subject_keys(work_id: str, series_link: str | None = None) -> list[str]:
    """作品的锁同时受所属系列的锁约束。"""
    keys = [subject_key(SubjectKind.WORK, work_id)]
    if series_link:
        keys.append(subject_key(SubjectKind.SERIES, series_link))
    return keys


def record_subject_keys(record: WorkRecord) -> list[str]:
    return work_subject_keys(record.work_id, record.series_link)


def _find_active_lock(db: Session, key: str, field: str) -> FieldLock | None:
    return (
        db.execute(
            select(FieldLock)
            .where(FieldLock.subject_key == key)
            .where(FieldLock.field == field)
            .where(FieldLock.locked.is_(True))
            .order_by(FieldLock.locked_at.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def set_lock(db: Session, *, subject_key: str, field: str, tier: str, actor_id: str) -> FieldLock:
    """创建或刷新有效锁，同一主体同一字段只保留一条有效锁。"""
    field_name = field.strip()
    if not field_name:
        raise ValueError("field must not be empty")
    lock = _find_active_lock(db, subject_key, field_name)
    if lock:
        lock.tier = normalize_tier(tier)
        lock.locked_by = actor_id
        lock.locked_at = utc_now()
    else:
        lock = FieldLock(
            subject_key=subject_key,
            field=field_name,
            locked=True,
            tier=normalize_tier(tier),
            locked_by=actor_id,
            locked_at=utc_now(),
        )
        db.add(lock)
    db.flush()
    return lock


def clear_lock(
    db: Session,
    *,
    subject_key: str,
    field: str,
    actor_id: str,
    actor_tier: str | None = None,
) -> FieldLock:
    """解除有效锁，保留历史行。

    传入 actor_tier 时，不允许低等级操作者解除高等级加的锁。
    """
    lock = _find_active_lock(db, subject_key, field.strip())
    if not lock:
        raise LockNotFoundError(
            f"no active lock for {field} on {subject_key}",
            details={"subject_key": subject_key, "field": field},
        )
    if actor_tier is not None and tier_rank(actor_tier) < tier_rank(lock.tier):
        raise InsufficientTierError(
            "lock was placed by a higher tier",
            details={"lock_tier": lock.tier, "actor_tier": str(actor_tier)},
        )
    lock.locked = False
    lock.unlocked_by = actor_id
    lock.unlocked_at = utc_now()
    db.flush()
    return lock


def list_active_locks(db: Session, subject_key: str) -> list[FieldLock]:
    return list(
        db.execute(
            select(FieldLock)
            .where(FieldLock.subject_key == subject_key)
            .where(FieldLock.locked.is_(True))
            .order_by(FieldLock.field)
        ).scalars()
    )


def set_override(db: Session, *, subject_key: str, actor_id: str, tier: str) -> FieldLock:
    """为主体登记准入豁免，永久有效。"""
    return set_lock(db, subject_key=subject_key, field=VALIDATION_OVERRIDE_FIELD, tier=tier, actor_id=actor_id)


def has_override(db: Session, subject_keys: Iterable[str]) -> bool:
    keys = [key for key in subject_keys if key]
    if not keys:
        return False
    found = db.execute(
        select(FieldLock.id)
        .where(FieldLock.subject_key.in_(keys))
        .where(FieldLock.field == VALIDATION_OVERRIDE_FIELD)
        .where(FieldLock.locked.is_(True))
        .limit(1)
    ).first()
    return found is not None


def set_global_lock_policy(
    db: Session,
    *,
    fields: Iterable[str],
    automated_writers_respect: bool,
    cache: GlobalLockPolicyCache,
) -> GlobalLockPolicy:
    """更新全局锁策略并使缓存失效。"""
    normalized = sorted({item.strip() for item in fields if item and item.strip()})
    set_config_value(db, GLOBAL_LOCKED_FIELDS_KEY, ",".join(normalized))
    set_config_value(db, AUTOMATED_WRITERS_RESPECT_KEY, "true" if automated_writers_respect else "false")
    cache.invalidate()
    return GlobalLockPolicy(fields=frozenset(normalized), automated_writers_respect=automated_writers_respect)
