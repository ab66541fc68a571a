"""外部主体链接解析。"""

import re
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

from ficrec_api.core.config import get_settings
from ficrec_api.core.errors import UnsupportedSubjectError
from ficrec_api.models.enums import SubjectKind

_WORK_PATH = re.compile(r"^/works/(\d+)(?:/chapters/\d+)?/?$")
_SERIES_PATH = re.compile(r"^/series/(\d+)/?$")


@dataclass(frozen=True)
class Subject:
    """规范化后的入库主体。"""

    kind: SubjectKind
    external_id: str
    url: str

    @property
    def key(self) -> str:
        return subject_key(self.kind, self.external_id)


def subject_key(kind: SubjectKind | str, external_id: str | int) -> str:
    """构造字段锁与豁免使用的主体键。"""
    return f"{SubjectKind(kind).value}:{external_id}"


def parse_subject(url: str, host: str | None = None) -> Subject:
    """解析并规范化主体链接。

    统一为 https、去掉查询串与锚点、去掉章节路径，保证同一作品只对应一条任务。
    """
    expected_host = host or get_settings().catalog_site_host
    raw = (url or "").strip()
    if "://" not in raw:
        raw = f"https://{raw}"
    parts = urlsplit(raw)
    netloc = parts.netloc.lower().removeprefix("www.")
    if netloc != expected_host:
        raise UnsupportedSubjectError(f"unsupported site: {parts.netloc or url}", details={"url": url})

    path = parts.path
    work_match = _WORK_PATH.match(path)
    if work_match:
        work_id = work_match.group(1)
        return Subject(
            kind=SubjectKind.WORK,
            external_id=work_id,
            url=urlunsplit(("https", expected_host, f"/works/{work_id}", "", "")),
        )
    series_match = _SERIES_PATH.match(path)
    if series_match:
        series_id = series_match.group(1)
        return Subject(
            kind=SubjectKind.SERIES,
            external_id=series_id,
            url=urlunsplit(("https", expected_host, f"/series/{series_id}", "", "")),
        )
    raise UnsupportedSubjectError(f"not a work or series link: {url}", details={"url": url})


def normalize_subject_url(url: str, host: str | None = None) -> str:
    """返回规范化后的主体链接。"""
    return parse_subject(url, host=host).url
