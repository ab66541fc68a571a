"""工作进程测试用的假抓取服务与记录型回调。"""

from typing import Any

from ficrec_api.models.enums import FetchErrorKind
from ficrec_api.schemas.metadata import SeriesMetadata, WorkMetadata
from ficrec_worker.fetcher import FetchError

SITE = "https://archiveofourown.org"
CATEGORY = "Supernatural (TV 2005)"
CANONICAL = "Castiel/Dean Winchester"


def work_url(work_id: str) -> str:
    return f"{SITE}/works/{work_id}"


def series_url(series_id: str) -> str:
    return f"{SITE}/series/{series_id}"


def make_work(work_id: str, **overrides: Any) -> WorkMetadata:
    """构造一篇可通过准入的作品元数据。"""
    payload: dict[str, Any] = {
        "url": work_url(work_id),
        "title": f"Work {work_id}",
        "authors": ["author-a"],
        "summary": f"summary {work_id}",
        "rating": "Teen And Up Audiences",
        "fandom_tags": [CATEGORY],
        "relationship_tags": [CANONICAL],
    }
    payload.update(overrides)
    return WorkMetadata.model_validate(payload)


def make_series(series_id: str, work_ids: list[str], **overrides: Any) -> SeriesMetadata:
    payload: dict[str, Any] = {
        "url": series_url(series_id),
        "name": f"Series {series_id}",
        "authors": ["author-a"],
        "work_urls": [work_url(work_id) for work_id in work_ids],
    }
    payload.update(overrides)
    return SeriesMetadata.model_validate(payload)


class FakeFetcher:
    """按链接返回预置元数据或异常，未登记的链接视为不存在。"""

    def __init__(self, works: dict[str, Any] | None = None, series: dict[str, Any] | None = None):
        self.works = dict(works or {})
        self.series = dict(series or {})
        self.calls: list[str] = []

    def _lookup(self, table: dict[str, Any], url: str):
        self.calls.append(url)
        value = table.get(url)
        if value is None:
            raise FetchError(FetchErrorKind.NOT_FOUND, "page not found", url=url)
        if isinstance(value, Exception):
            raise value
        return value

    def fetch_work(self, url: str) -> WorkMetadata:
        return self._lookup(self.works, url)

    def fetch_series(self, url: str) -> SeriesMetadata:
        return self._lookup(self.series, url)


class RecordingNotificationSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[Any, list[str]]] = []

    def notify_requesters(self, outcome, requester_ids):
        self.calls.append((outcome, list(requester_ids)))
        if self.fail:
            raise RuntimeError("chat platform unavailable")


class RecordingModerationSink:
    def __init__(self):
        self.calls: list[tuple[str, str, str | None]] = []

    def notify_moderation(self, subject_url, reason, requester_id):
        self.calls.append((subject_url, reason, requester_id))
