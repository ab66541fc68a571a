"""系列主作品选择与系列记录写入。"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from ficrec_api.models.catalog import SeriesRecord
from ficrec_api.models.enums import SubjectKind
from ficrec_api.services.locks import GlobalLockPolicyCache, LockResolver
from ficrec_api.services.merge import MergeOutcome, MergePatch, get_series_record, series_merge_engine
from ficrec_api.services.subjects import subject_key

_FOLLOW_UP_MARKERS = ("sequel", "prequel")


@dataclass(frozen=True)
class SeriesMember:
    """参与主作品选择的系列成员。"""

    work_id: str
    published_on: date | None = None
    tags: Sequence[str] = field(default_factory=tuple)


def is_follow_up(tags: Iterable[str]) -> bool:
    """标签中出现 sequel 或 prequel 子串即视为续作/前传。"""
    for tag in tags:
        lowered = tag.lower()
        if any(marker in lowered for marker in _FOLLOW_UP_MARKERS):
            return True
    return False


def select_primary(members: Sequence[SeriesMember]) -> list[bool]:
    """为每个成员返回是否为主作品，非空输入恰有一个为真。

    候选为非续作/前传作品（全部是续作时退回全部成员），
    取首发日期最早者；缺失日期排在最后，同日期按原顺序。
    """
    if not members:
        return []
    candidates = [index for index, member in enumerate(members) if not is_follow_up(member.tags)]
    if not candidates:
        candidates = list(range(len(members)))
    primary = min(
        candidates,
        key=lambda index: (members[index].published_on is None, members[index].published_on or date.min, index),
    )
    return [index == primary for index in range(len(members))]


def merge_series(
    db: Session,
    *,
    series_id: str,
    url: str,
    incoming: Mapping[str, Any],
    actor_tier: str,
    policy_cache: GlobalLockPolicyCache,
) -> MergeOutcome:
    """写入或更新系列记录。"""
    record = get_series_record(db, series_id)
    if record is None:
        record = series_merge_engine.create(db, SeriesRecord, {"series_id": series_id, "url": url}, incoming)
        return MergeOutcome(record=record, patch=MergePatch(), created=True)

    locks = LockResolver(db, policy_cache).resolve([subject_key(SubjectKind.SERIES, series_id)])
    patch = series_merge_engine.diff(record, incoming, locks, actor_tier)
    series_merge_engine.apply(db, record, patch)
    return MergeOutcome(record=record, patch=patch, created=False)
