"""抓取解析服务客户端。

HTML 抓取与解析由独立服务完成，工作进程只通过 HTTP 获取规范化元数据，
并把失败归类为 not_found / forbidden / site_defense / connection_error。
"""

from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from ficrec_api.models.enums import FetchErrorKind
from ficrec_api.schemas.metadata import SeriesMetadata, WorkMetadata

_STATUS_TO_KIND = {
    401: FetchErrorKind.FORBIDDEN,
    403: FetchErrorKind.FORBIDDEN,
    404: FetchErrorKind.NOT_FOUND,
    410: FetchErrorKind.NOT_FOUND,
    429: FetchErrorKind.SITE_DEFENSE,
    503: FetchErrorKind.SITE_DEFENSE,
}


class FetchError(Exception):
    """已归类的抓取失败。"""

    def __init__(self, kind: FetchErrorKind, message: str, *, url: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.url = url

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class Fetcher(Protocol):
    def fetch_work(self, url: str) -> WorkMetadata: ...

    def fetch_series(self, url: str) -> SeriesMetadata: ...


def classify_response(response: httpx.Response) -> FetchErrorKind:
    """按响应体声明的分类优先，其次按状态码归类。"""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        declared = body.get("error_kind")
        if declared in {kind.value for kind in FetchErrorKind}:
            return FetchErrorKind(declared)
    return _STATUS_TO_KIND.get(response.status_code, FetchErrorKind.CONNECTION_ERROR)


class HttpMetadataFetcher:
    """同步 HTTP 抓取客户端，工作进程单线程顺序调用。"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def _post(self, path: str, url: str) -> dict[str, Any]:
        try:
            response = self._get_client().post(path, json={"url": url})
        except httpx.TransportError as exc:
            raise FetchError(FetchErrorKind.CONNECTION_ERROR, str(exc) or type(exc).__name__, url=url) from exc
        if response.status_code >= 400:
            kind = classify_response(response)
            raise FetchError(kind, f"parse service returned {response.status_code}", url=url)
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError(FetchErrorKind.CONNECTION_ERROR, "parse service returned invalid json", url=url) from exc
        if not isinstance(payload, dict):
            raise FetchError(FetchErrorKind.CONNECTION_ERROR, "parse service returned unexpected payload", url=url)
        return payload

    def fetch_work(self, url: str) -> WorkMetadata:
        payload = self._post("/parse/work", url)
        try:
            return WorkMetadata.model_validate({"url": url, **payload})
        except ValidationError as exc:
            raise FetchError(FetchErrorKind.CONNECTION_ERROR, f"invalid work metadata: {exc}", url=url) from exc

    def fetch_series(self, url: str) -> SeriesMetadata:
        payload = self._post("/parse/series", url)
        try:
            return SeriesMetadata.model_validate({"url": url, **payload})
        except ValidationError as exc:
            raise FetchError(FetchErrorKind.CONNECTION_ERROR, f"invalid series metadata: {exc}", url=url) from exc
