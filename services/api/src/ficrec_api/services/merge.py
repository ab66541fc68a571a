"""目录记录合并。

将新抓取的元数据与已存记录逐字段比较，生成最小补丁；
被字段锁拦截的变化记入 blocked，不写入。
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ficrec_api.models.catalog import SeriesRecord, WorkRecord
from ficrec_api.services.locks import GlobalLockPolicyCache, LockResolver, ResolvedLocks, work_subject_keys


class FieldKind(str, Enum):
    """字段比较语义。"""

    SCALAR = "scalar"
    ORDERED = "ordered"  # 列表顺序有意义，例如作者。
    SET = "set"  # 列表顺序无意义，例如标签。


@dataclass(frozen=True)
class MergeField:
    name: str
    kind: FieldKind = FieldKind.SCALAR
    # 为真时传入 None 视为“未提供”，不清空已有值。
    keep_on_none: bool = False


WORK_FIELDS: tuple[MergeField, ...] = (
    MergeField("title"),
    MergeField("authors", FieldKind.ORDERED),
    MergeField("summary"),
    MergeField("tags", FieldKind.SET),
    MergeField("rating"),
    MergeField("word_count"),
    MergeField("chapters"),
    MergeField("completion_status"),
    MergeField("language"),
    MergeField("published_on"),
    MergeField("source_updated_on"),
    MergeField("hits"),
    MergeField("kudos"),
    MergeField("bookmarks"),
    MergeField("comments"),
    MergeField("archive_warnings", FieldKind.SET),
    MergeField("fandom_tags", FieldKind.SET),
    MergeField("relationship_tags", FieldKind.SET),
    MergeField("character_tags", FieldKind.SET),
    MergeField("freeform_tags", FieldKind.SET),
    MergeField("series_link", keep_on_none=True),
    MergeField("is_primary_in_series"),
)

SERIES_FIELDS: tuple[MergeField, ...] = (
    MergeField("name"),
    MergeField("summary"),
    MergeField("work_ids", FieldKind.ORDERED),
    MergeField("authors", FieldKind.ORDERED),
    MergeField("work_count"),
    MergeField("word_count"),
    MergeField("completion_status"),
    MergeField("primary_work_id", keep_on_none=True),
)


def values_differ(kind: FieldKind, current: Any, incoming: Any) -> bool:
    if kind is FieldKind.SCALAR:
        return current != incoming
    current_items = list(current or [])
    incoming_items = list(incoming or [])
    if kind is FieldKind.ORDERED:
        return current_items != incoming_items
    return set(current_items) != set(incoming_items)


@dataclass
class MergePatch:
    """合并补丁：待写入字段与被锁拦截字段。"""

    changes: dict[str, Any] = field(default_factory=dict)
    blocked: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.changes


class MergeEngine:
    """按字段表执行比较与写入。"""

    def __init__(self, fields: tuple[MergeField, ...]):
        self.fields = fields

    def diff(
        self,
        current: Any,
        incoming: Mapping[str, Any],
        locks: ResolvedLocks | None,
        actor_tier: str,
    ) -> MergePatch:
        """计算补丁，只比较 incoming 中出现的字段。"""
        patch = MergePatch()
        for merge_field in self.fields:
            if merge_field.name not in incoming:
                continue
            new_value = incoming[merge_field.name]
            # 列表字段列不可为空，None 一律视为未提供。
            if new_value is None and (merge_field.keep_on_none or merge_field.kind is not FieldKind.SCALAR):
                continue
            old_value = getattr(current, merge_field.name)
            if not values_differ(merge_field.kind, old_value, new_value):
                continue
            if locks is not None and locks.is_locked(merge_field.name, actor_tier, old_value):
                patch.blocked.append(merge_field.name)
                continue
            patch.changes[merge_field.name] = list(new_value) if merge_field.kind is not FieldKind.SCALAR else new_value
        return patch

    def apply(self, db: Session, record: Any, patch: MergePatch) -> Any:
        """空补丁不访问数据库。"""
        if patch.is_empty:
            return record
        for name, value in patch.changes.items():
            setattr(record, name, value)
        db.flush()
        db.refresh(record)
        return record

    def create(self, db: Session, model: type, identity: Mapping[str, Any], incoming: Mapping[str, Any]) -> Any:
        """首次入库写入完整记录，不受字段锁约束。"""
        values = dict(identity)
        for merge_field in self.fields:
            if merge_field.name in incoming and incoming[merge_field.name] is not None:
                value = incoming[merge_field.name]
                values[merge_field.name] = list(value) if merge_field.kind is not FieldKind.SCALAR else value
        record = model(**values)
        db.add(record)
        db.flush()
        db.refresh(record)
        return record


work_merge_engine = MergeEngine(WORK_FIELDS)
series_merge_engine = MergeEngine(SERIES_FIELDS)


@dataclass
class MergeOutcome:
    record: Any
    patch: MergePatch
    created: bool


def get_work_record(db: Session, work_id: str) -> WorkRecord | None:
    return db.execute(select(WorkRecord).where(WorkRecord.work_id == work_id)).scalar_one_or_none()


def get_series_record(db: Session, series_id: str) -> SeriesRecord | None:
    return db.execute(select(SeriesRecord).where(SeriesRecord.series_id == series_id)).scalar_one_or_none()


def merge_work(
    db: Session,
    *,
    work_id: str,
    url: str,
    incoming: Mapping[str, Any],
    actor_tier: str,
    policy_cache: GlobalLockPolicyCache,
    created_by: str | None = None,
) -> MergeOutcome:
    """写入或更新作品记录。"""
    record = get_work_record(db, work_id)
    if record is None:
        record = work_merge_engine.create(
            db,
            WorkRecord,
            {"work_id": work_id, "url": url, "created_by": created_by},
            incoming,
        )
        return MergeOutcome(record=record, patch=MergePatch(), created=True)

    series_link = incoming.get("series_link") or record.series_link
    locks = LockResolver(db, policy_cache).resolve(work_subject_keys(work_id, series_link))
    patch = work_merge_engine.diff(record, incoming, locks, actor_tier)
    work_merge_engine.apply(db, record, patch)
    return MergeOutcome(record=record, patch=patch, created=False)
