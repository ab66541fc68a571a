"""通知与版务回调。"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Protocol
from uuid import UUID

import httpx

logger = logging.getLogger("ficrec_worker.sinks")


@dataclass(frozen=True)
class JobOutcome:
    """任务终态摘要，随通知一起发送。"""

    job_id: UUID
    subject_url: str
    status: str
    result: dict[str, Any] | None = None
    error_message: str | None = None
    rejection_reason: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["job_id"] = str(self.job_id)
        return payload


class NotificationSink(Protocol):
    def notify_requesters(self, outcome: JobOutcome, requester_ids: list[str]) -> None: ...


class ModerationSink(Protocol):
    def notify_moderation(self, subject_url: str, reason: str, requester_id: str | None) -> None: ...


class LoggingNotificationSink:
    """未配置回调地址时的默认实现。"""

    def notify_requesters(self, outcome: JobOutcome, requester_ids: list[str]) -> None:
        logger.info(
            "notify requesters job_id=%s status=%s url=%s requesters=%s",
            outcome.job_id,
            outcome.status,
            outcome.subject_url,
            ",".join(requester_ids),
        )


class LoggingModerationSink:
    def notify_moderation(self, subject_url: str, reason: str, requester_id: str | None) -> None:
        logger.warning("moderation notice url=%s requester=%s reason=%s", subject_url, requester_id, reason)


class WebhookNotificationSink:
    """将通知投递到命令层回调地址，失败时抛出 httpx 异常由调用方记录。"""

    def __init__(self, url: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def notify_requesters(self, outcome: JobOutcome, requester_ids: list[str]) -> None:
        response = self._client.post(
            self.url,
            json={"event": "job.finished", "outcome": outcome.to_payload(), "requester_ids": requester_ids},
        )
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


class WebhookModerationSink:
    def __init__(self, url: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def notify_moderation(self, subject_url: str, reason: str, requester_id: str | None) -> None:
        response = self._client.post(
            self.url,
            json={
                "event": "eligibility.rejected",
                "subject_url": subject_url,
                "reason": reason,
                "requester_id": requester_id,
            },
        )
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()
