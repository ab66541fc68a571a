import pytest
from sqlalchemy import func, select

from ficrec_api.core.errors import InsufficientTierError, LockNotFoundError
from ficrec_api.models.enums import ActorTier
from ficrec_api.models.lock import ALL_FIELDS, FieldLock
from ficrec_api.services.locks import (
    LockResolver,
    clear_lock,
    has_override,
    list_active_locks,
    set_global_lock_policy,
    set_lock,
    set_override,
    work_subject_keys,
)
from ficrec_api.services.permissions import normalize_tier, tier_rank
from ficrec_api.services.runtime_config import GLOBAL_LOCKED_FIELDS_KEY, set_config_value


def test_tier_order_and_unknown_tier_falls_back_to_member():
    ranks = [tier_rank(tier) for tier in ("non_member", "member", "mod", "admin", "superadmin")]

    assert ranks == sorted(ranks)
    assert normalize_tier("Bogus") == ActorTier.MEMBER
    assert normalize_tier(" MOD ") == ActorTier.MOD


def test_field_lock_blocks_member_even_when_value_is_empty(db, policy_cache):
    set_lock(db, subject_key="work:1", field="title", tier="mod", actor_id="mod-1")
    resolver = LockResolver(db, policy_cache)

    assert resolver.is_locked("work:1", "title", "member", current_value=None)
    assert resolver.is_locked("work:1", "title", "member", current_value="Old")
    assert not resolver.is_locked("work:1", "summary", "member", current_value="x")


def test_higher_tier_always_bypasses(db, policy_cache):
    set_lock(db, subject_key="work:1", field=ALL_FIELDS, tier="superadmin", actor_id="root")
    set_global_lock_policy(db, fields=["summary"], automated_writers_respect=True, cache=policy_cache)
    resolver = LockResolver(db, policy_cache)

    for tier in ("mod", "admin", "superadmin"):
        assert not resolver.is_locked("work:1", "title", tier, current_value="x")
        assert not resolver.is_locked("work:2", "summary", tier, current_value="x")


def test_all_lock_covers_every_field(db, policy_cache):
    set_lock(db, subject_key="work:1", field=ALL_FIELDS, tier="mod", actor_id="mod-1")
    locks = LockResolver(db, policy_cache).resolve(["work:1"])

    assert locks.is_locked("title", "member")
    assert locks.is_locked("kudos", "member", 5)


def test_series_lock_applies_to_member_work(db, policy_cache):
    set_lock(db, subject_key="series:7", field="rating", tier="mod", actor_id="mod-1")
    resolver = LockResolver(db, policy_cache)

    assert resolver.is_locked(work_subject_keys("1", "7"), "rating", "member", "mature")
    assert not resolver.is_locked(work_subject_keys("1"), "rating", "member", "mature")


def test_global_policy_blocks_only_populated_fields(db, policy_cache):
    set_global_lock_policy(db, fields=["summary"], automated_writers_respect=True, cache=policy_cache)
    resolver = LockResolver(db, policy_cache)

    assert resolver.is_locked("work:1", "summary", "member", current_value="existing")
    assert not resolver.is_locked("work:1", "summary", "member", current_value="")
    assert not resolver.is_locked("work:1", "summary", "member", current_value=None)
    assert not resolver.is_locked("work:1", "summary", "member", current_value=[])


def test_global_policy_switch_off_lets_writers_through(db, policy_cache):
    set_global_lock_policy(db, fields=["summary"], automated_writers_respect=False, cache=policy_cache)

    assert not LockResolver(db, policy_cache).is_locked("work:1", "summary", "member", "existing")


def test_policy_cache_serves_stale_value_until_invalidated(db, policy_cache):
    set_global_lock_policy(db, fields=["summary"], automated_writers_respect=True, cache=policy_cache)
    assert "summary" in policy_cache.get(db).fields

    set_config_value(db, GLOBAL_LOCKED_FIELDS_KEY, "title")
    assert "summary" in policy_cache.get(db).fields

    policy_cache.invalidate()
    assert policy_cache.get(db).fields == frozenset({"title"})


def test_set_lock_keeps_single_active_row(db):
    set_lock(db, subject_key="work:1", field="title", tier="mod", actor_id="mod-1")
    set_lock(db, subject_key="work:1", field="title", tier="admin", actor_id="admin-1")

    active = list_active_locks(db, "work:1")
    assert len(active) == 1
    assert active[0].tier == "admin"
    assert active[0].locked_by == "admin-1"


def test_clear_lock_keeps_history_and_stops_blocking(db, policy_cache):
    set_lock(db, subject_key="work:1", field="title", tier="mod", actor_id="mod-1")
    lock = clear_lock(db, subject_key="work:1", field="title", actor_id="mod-2", actor_tier="mod")

    assert lock.locked is False
    assert lock.unlocked_by == "mod-2"
    assert lock.unlocked_at is not None
    assert db.execute(select(func.count()).select_from(FieldLock)).scalar_one() == 1
    assert not LockResolver(db, policy_cache).is_locked("work:1", "title", "member", "x")


def test_clear_lock_refuses_lower_tier_and_missing_lock(db):
    set_lock(db, subject_key="work:1", field="title", tier="admin", actor_id="admin-1")

    with pytest.raises(InsufficientTierError):
        clear_lock(db, subject_key="work:1", field="title", actor_id="mod-1", actor_tier="mod")
    with pytest.raises(LockNotFoundError):
        clear_lock(db, subject_key="work:1", field="summary", actor_id="mod-1")


def test_override_is_not_treated_as_field_lock(db, policy_cache):
    set_override(db, subject_key="work:1", actor_id="mod-1", tier="mod")

    assert has_override(db, ["work:1"])
    assert not has_override(db, ["work:2"])
    assert LockResolver(db, policy_cache).resolve(["work:1"]).fields == frozenset()
