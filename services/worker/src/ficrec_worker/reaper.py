"""队列清理进程。

与工作循环并行运行，只处理两类行:
1) 超过保留期的终态任务：连同订阅者删除
2) 超过僵死阈值仍在 pending/processing 的任务：置为 error 并通知请求者
僵死判断只依据 updated_at 与当前时间的差值。
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from ficrec_api.models.enums import ACTIVE_JOB_STATUSES, TERMINAL_JOB_STATUSES, IngestionJobStatus
from ficrec_api.models.queue import IngestionJob, QueueSubscriber
from ficrec_api.utils.clock import utc_now
from ficrec_worker.pipeline import FinalizedJob, JobVerdict, finalize_job
from ficrec_worker.sinks import NotificationSink

logger = logging.getLogger("ficrec_worker.reaper")

STALE_JOB_MESSAGE = "stale job reclaimed"


@dataclass
class SweepReport:
    purged_job_ids: list[UUID] = field(default_factory=list)
    reclaimed: list[FinalizedJob] = field(default_factory=list)


def sweep(
    db: Session,
    *,
    now: datetime,
    terminal_retention_seconds: int,
    stale_after_seconds: int,
) -> SweepReport:
    """执行一次清理，调用方提交事务并发送通知。"""
    report = SweepReport()

    retention_cutoff = now - timedelta(seconds=terminal_retention_seconds)
    expired_ids = list(
        db.execute(
            select(IngestionJob.id)
            .where(IngestionJob.status.in_(TERMINAL_JOB_STATUSES))
            .where(IngestionJob.updated_at < retention_cutoff)
        ).scalars()
    )
    if expired_ids:
        db.execute(delete(QueueSubscriber).where(QueueSubscriber.job_id.in_(expired_ids)))
        db.execute(delete(IngestionJob).where(IngestionJob.id.in_(expired_ids)))
        report.purged_job_ids = expired_ids

    stale_cutoff = now - timedelta(seconds=stale_after_seconds)
    stale_jobs = list(
        db.execute(
            select(IngestionJob)
            .where(IngestionJob.status.in_(ACTIVE_JOB_STATUSES))
            .where(IngestionJob.updated_at < stale_cutoff)
            .order_by(IngestionJob.submitted_at)
        ).scalars()
    )
    for job in stale_jobs:
        verdict = JobVerdict(status=IngestionJobStatus.ERROR, error_message=STALE_JOB_MESSAGE)
        report.reclaimed.append(finalize_job(db, job, verdict))
    db.flush()
    return report


class Reaper:
    """定期清理队列并通知被回收任务的请求者。"""

    def __init__(
        self,
        session_factory: sessionmaker,
        notification_sink: NotificationSink,
        *,
        terminal_retention_seconds: int = 10800,
        stale_after_seconds: int = 900,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.notification_sink = notification_sink
        self.terminal_retention_seconds = terminal_retention_seconds
        self.stale_after_seconds = stale_after_seconds
        self.clock = clock

    def run_once(self) -> SweepReport:
        with self.session_factory() as db:
            report = sweep(
                db,
                now=self.clock(),
                terminal_retention_seconds=self.terminal_retention_seconds,
                stale_after_seconds=self.stale_after_seconds,
            )
            db.commit()

        for finalized in report.reclaimed:
            if not finalized.requester_ids:
                continue
            try:
                self.notification_sink.notify_requesters(finalized.outcome, finalized.requester_ids)
            except Exception:
                logger.exception("stale job notification failed job_id=%s", finalized.outcome.job_id)

        if report.purged_job_ids or report.reclaimed:
            logger.info(
                "reaper sweep purged=%s reclaimed=%s",
                len(report.purged_job_ids),
                len(report.reclaimed),
            )
        return report


def start_reaper_thread(reaper: Reaper, interval_seconds: float, stop_event: threading.Event) -> threading.Thread:
    """启动后台清理线程，启动时立即执行一次，之后按间隔执行。"""

    def _loop() -> None:
        while not stop_event.is_set():
            try:
                reaper.run_once()
            except Exception:
                logger.exception("reaper sweep failed")
            if stop_event.wait(interval_seconds):
                return

    thread = threading.Thread(target=_loop, name="ficrec-reaper", daemon=True)
    thread.start()
    return thread
