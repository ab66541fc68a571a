"""入库任务处理流程。

单个任务的处理分三段:
1) 读取任务快照（短事务）
2) 按节奏抓取元数据（不持有数据库事务）
3) 准入校验 + 合并 + 终态写入（同一事务提交），提交后再通知请求者

状态流转: pending -> processing -> done | series-done | error | rejected
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from ficrec_api.core.errors import UnsupportedSubjectError
from ficrec_api.models.enums import (
    SUCCESS_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    BatchKind,
    IngestionJobStatus,
    SeriesRejectionPolicy,
    SubjectKind,
)
from ficrec_api.models.queue import IngestionJob
from ficrec_api.schemas.metadata import SeriesMetadata, WorkMetadata, clean_tags
from ficrec_api.services import (
    AUTOMATED_WRITER_TIER,
    EligibilityGate,
    GlobalLockPolicyCache,
    SeriesMember,
    Subject,
    detach_subscribers,
    merge_series,
    merge_work,
    parse_subject,
    select_primary,
    work_subject_keys,
)
from ficrec_api.services.admission import subject_override_keys
from ficrec_api.services.runtime_config import get_instant_suppress_threshold_ms
from ficrec_api.utils.clock import ensure_utc, utc_now
from ficrec_worker.config import Settings
from ficrec_worker.fetcher import Fetcher, FetchError
from ficrec_worker.pacing import JobPacer, RateBudget
from ficrec_worker.sinks import JobOutcome, ModerationSink, NotificationSink

logger = logging.getLogger("ficrec_worker")

MAX_ERROR_LENGTH = 2000


@dataclass
class WorkerContext:
    """工作进程依赖集合，测试中可逐项替换。"""

    session_factory: sessionmaker
    fetcher: Fetcher
    notification_sink: NotificationSink
    moderation_sink: ModerationSink
    rate_budget: RateBudget
    pacer: JobPacer
    gate: EligibilityGate
    lock_policy_cache: GlobalLockPolicyCache
    settings: Settings
    sleep: Callable[[float], None] = time.sleep


@dataclass(frozen=True)
class JobSnapshot:
    id: UUID
    subject_url: str
    batch_kind: str
    first_requester: str | None
    # 创建请求附带的补充标签。
    additional_tags: tuple[str, ...] = ()


@dataclass
class JobVerdict:
    """处理结论，决定任务终态。"""

    status: IngestionJobStatus
    result: dict[str, Any] | None = None
    error_message: str | None = None
    rejection_reason: str | None = None
    # 需要通知版务的 (主体链接, 原因)。
    moderation: tuple[str, str] | None = None


@dataclass
class FetchedSeries:
    series: SeriesMetadata
    member_ids: list[str]
    members: list[tuple[Subject, WorkMetadata]] = field(default_factory=list)
    failures: list[dict[str, str]] = field(default_factory=list)


@dataclass
class FinalizedJob:
    outcome: JobOutcome
    requester_ids: list[str]
    suppressed: bool
    first_requester: str | None
    moderation: tuple[str, str] | None


def _error_verdict(message: str) -> JobVerdict:
    return JobVerdict(status=IngestionJobStatus.ERROR, error_message=message[:MAX_ERROR_LENGTH])


def _unexpected_verdict(exc: Exception) -> JobVerdict:
    return _error_verdict(str(exc) or type(exc).__name__)


def claim_next_job(db: Session) -> IngestionJob | None:
    """领取最早提交的待处理任务并置为处理中，调用方提交事务。"""
    job = (
        db.execute(
            select(IngestionJob)
            .where(IngestionJob.status == IngestionJobStatus.PENDING)
            .order_by(IngestionJob.submitted_at, IngestionJob.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        .scalars()
        .first()
    )
    if job is None:
        return None
    job.status = IngestionJobStatus.PROCESSING
    db.flush()
    return job


def _pace_fetch(ctx: WorkerContext, slot: float) -> None:
    """抓取前随机停顿，并等待到预留时间槽。"""
    ctx.sleep(ctx.pacer.think_time())
    wait = ctx.rate_budget.seconds_until(slot)
    if wait > 0:
        ctx.sleep(wait)


def _work_incoming(metadata: WorkMetadata, snapshot: JobSnapshot) -> dict[str, Any]:
    incoming = metadata.model_dump(exclude={"url"})
    if snapshot.additional_tags:
        incoming["tags"] = clean_tags([*incoming["tags"], *snapshot.additional_tags])
    return incoming


def fetch_single(ctx: WorkerContext, subject: Subject) -> WorkMetadata:
    _pace_fetch(ctx, ctx.rate_budget.reserve(1))
    return ctx.fetcher.fetch_work(subject.url)


def fetch_series(ctx: WorkerContext, subject: Subject) -> FetchedSeries:
    """抓取系列页与前若干篇成员作品，成员抓取失败只记录不中断。"""
    _pace_fetch(ctx, ctx.rate_budget.reserve(1))
    series = ctx.fetcher.fetch_series(subject.url)

    member_subjects: list[Subject] = []
    failures: list[dict[str, str]] = []
    seen: set[str] = set()
    for work_url in series.work_urls:
        try:
            member = parse_subject(work_url)
        except UnsupportedSubjectError as exc:
            failures.append({"url": work_url, "kind": "unsupported", "error": exc.message})
            continue
        if member.kind is not SubjectKind.WORK or member.external_id in seen:
            continue
        seen.add(member.external_id)
        member_subjects.append(member)

    fetched = FetchedSeries(
        series=series,
        member_ids=[member.external_id for member in member_subjects],
        failures=failures,
    )
    selected = member_subjects[: ctx.settings.max_series_members]
    if not selected:
        return fetched

    # 成员抓取作为一个整体窗口预留，时间点按 interval 依次排开。
    for member, slot in zip(selected, ctx.rate_budget.reserve_window(len(selected))):
        _pace_fetch(ctx, slot)
        try:
            fetched.members.append((member, ctx.fetcher.fetch_work(member.url)))
        except FetchError as exc:
            logger.warning("series member fetch failed url=%s kind=%s", member.url, exc.kind.value)
            fetched.failures.append({"url": member.url, "kind": exc.kind.value, "error": exc.message})
    return fetched


def apply_single(ctx: WorkerContext, db: Session, snapshot: JobSnapshot, subject: Subject, metadata: WorkMetadata) -> JobVerdict:
    verdict = ctx.gate.evaluate(db, subject_override_keys(db, subject), metadata)
    if not verdict.valid:
        reason = verdict.reason or "rejected by eligibility policy"
        return JobVerdict(
            status=IngestionJobStatus.REJECTED,
            rejection_reason=reason,
            moderation=(snapshot.subject_url, reason),
        )

    merged = merge_work(
        db,
        work_id=subject.external_id,
        url=subject.url,
        incoming=_work_incoming(metadata, snapshot),
        actor_tier=AUTOMATED_WRITER_TIER,
        policy_cache=ctx.lock_policy_cache,
        created_by=snapshot.first_requester,
    )
    return JobVerdict(
        status=IngestionJobStatus.DONE,
        result={
            "kind": SubjectKind.WORK.value,
            "work_id": subject.external_id,
            "url": subject.url,
            "title": merged.record.title,
            "created": merged.created,
            "updated_fields": sorted(merged.patch.changes),
            "blocked_fields": merged.patch.blocked,
        },
    )


def _series_rejected(policy: SeriesRejectionPolicy, accepted: int, rejected: int) -> bool:
    if policy is SeriesRejectionPolicy.ANY_MEMBER:
        return rejected > 0
    return accepted == 0 and rejected > 0


def apply_series(
    ctx: WorkerContext,
    db: Session,
    snapshot: JobSnapshot,
    subject: Subject,
    fetched: FetchedSeries,
) -> JobVerdict:
    """系列入库：逐篇准入、选主作品、合并系列与成员记录。"""
    if not fetched.members:
        details = "; ".join(f"{item['url']}: {item['error']}" for item in fetched.failures)
        message = "no series member could be fetched"
        return _error_verdict(f"{message}: {details}" if details else message)

    accepted: list[tuple[Subject, WorkMetadata]] = []
    rejections: list[dict[str, str]] = []
    for member, metadata in fetched.members:
        keys = work_subject_keys(member.external_id, subject.external_id)
        result = ctx.gate.evaluate(db, keys, metadata)
        if result.valid:
            accepted.append((member, metadata))
        else:
            rejections.append({"work_id": member.external_id, "reason": result.reason or "rejected"})

    if _series_rejected(ctx.settings.series_rejection_policy, len(accepted), len(rejections)):
        reason = "; ".join(f"{item['work_id']}: {item['reason']}" for item in rejections)
        return JobVerdict(
            status=IngestionJobStatus.REJECTED,
            rejection_reason=reason,
            moderation=(snapshot.subject_url, reason),
        )

    flags = select_primary(
        [
            SeriesMember(
                work_id=member.external_id,
                published_on=metadata.published_on,
                tags=[*metadata.tags, *metadata.freeform_tags],
            )
            for member, metadata in accepted
        ]
    )
    primary_work_id = next(member.external_id for (member, _), flag in zip(accepted, flags) if flag)

    series = fetched.series
    series_outcome = merge_series(
        db,
        series_id=subject.external_id,
        url=subject.url,
        incoming={
            "name": series.name,
            "summary": series.summary,
            "authors": series.authors,
            "work_ids": fetched.member_ids,
            "work_count": series.work_count if series.work_count is not None else len(fetched.member_ids),
            "word_count": series.word_count,
            "completion_status": series.completion_status,
            "primary_work_id": primary_work_id,
        },
        actor_tier=AUTOMATED_WRITER_TIER,
        policy_cache=ctx.lock_policy_cache,
    )

    works: list[dict[str, Any]] = []
    for (member, metadata), is_primary in zip(accepted, flags):
        incoming = _work_incoming(metadata, snapshot)
        incoming["series_link"] = subject.external_id
        incoming["is_primary_in_series"] = is_primary
        merged = merge_work(
            db,
            work_id=member.external_id,
            url=member.url,
            incoming=incoming,
            actor_tier=AUTOMATED_WRITER_TIER,
            policy_cache=ctx.lock_policy_cache,
            created_by=snapshot.first_requester,
        )
        works.append(
            {
                "work_id": member.external_id,
                "title": merged.record.title,
                "created": merged.created,
                "is_primary": is_primary,
                "blocked_fields": merged.patch.blocked,
            }
        )

    return JobVerdict(
        status=IngestionJobStatus.SERIES_DONE,
        result={
            "kind": SubjectKind.SERIES.value,
            "series_id": subject.external_id,
            "url": subject.url,
            "name": series_outcome.record.name,
            "created": series_outcome.created,
            "primary_work_id": primary_work_id,
            "works": works,
            "rejected_members": rejections,
            "failed_members": fetched.failures,
        },
    )


def finalize_job(db: Session, job: IngestionJob, verdict: JobVerdict) -> FinalizedJob:
    """写入终态并摘下订阅者；即时任务在阈值内完成时静默。"""
    job.status = verdict.status
    job.result = verdict.result
    job.error_message = verdict.error_message
    job.rejection_reason = verdict.rejection_reason
    db.flush()

    requester_ids = detach_subscribers(db, job.id)
    suppressed = False
    if job.instant_candidate and verdict.status in SUCCESS_JOB_STATUSES:
        elapsed_ms = (utc_now() - ensure_utc(job.submitted_at)).total_seconds() * 1000
        suppressed = elapsed_ms <= get_instant_suppress_threshold_ms(db)

    outcome = JobOutcome(
        job_id=job.id,
        subject_url=job.subject_url,
        status=verdict.status.value,
        result=verdict.result,
        error_message=verdict.error_message,
        rejection_reason=verdict.rejection_reason,
    )
    return FinalizedJob(
        outcome=outcome,
        requester_ids=requester_ids,
        suppressed=suppressed,
        first_requester=(job.requested_by or [None])[0],
        moderation=verdict.moderation,
    )


def dispatch_notifications(ctx: WorkerContext, finalized: FinalizedJob) -> None:
    """订阅者已在事务内删除，回调失败只记录日志，不重发。"""
    if finalized.moderation:
        subject_url, reason = finalized.moderation
        try:
            ctx.moderation_sink.notify_moderation(subject_url, reason, finalized.first_requester)
        except Exception:
            logger.exception("moderation notice failed url=%s", subject_url)

    if not finalized.requester_ids:
        return
    if finalized.suppressed:
        logger.info(
            "notification suppressed job_id=%s requesters=%s",
            finalized.outcome.job_id,
            len(finalized.requester_ids),
        )
        return
    try:
        ctx.notification_sink.notify_requesters(finalized.outcome, finalized.requester_ids)
    except Exception:
        logger.exception("requester notification failed job_id=%s", finalized.outcome.job_id)


def _load_snapshot(ctx: WorkerContext, job_id: UUID) -> JobSnapshot | None:
    with ctx.session_factory() as db:
        job = db.get(IngestionJob, job_id)
        if job is None or job.status != IngestionJobStatus.PROCESSING:
            return None
        return JobSnapshot(
            id=job.id,
            subject_url=job.subject_url,
            batch_kind=job.batch_kind,
            first_requester=(job.requested_by or [None])[0],
            additional_tags=tuple(job.additional_tags or ()),
        )


def process_job(ctx: WorkerContext, job_id: UUID) -> JobOutcome | None:
    """处理一个已领取的任务；任务已被清理或重置时返回 None。"""
    snapshot = _load_snapshot(ctx, job_id)
    if snapshot is None:
        logger.warning("claimed job vanished before processing id=%s", job_id)
        return None

    verdict: JobVerdict | None = None
    fetched: WorkMetadata | FetchedSeries | None = None
    subject: Subject | None = None
    try:
        subject = parse_subject(snapshot.subject_url)
        if snapshot.batch_kind == BatchKind.SERIES:
            fetched = fetch_series(ctx, subject)
        else:
            fetched = fetch_single(ctx, subject)
    except FetchError as exc:
        logger.warning("fetch failed id=%s url=%s kind=%s", job_id, snapshot.subject_url, exc.kind.value)
        verdict = _error_verdict(str(exc))
    except Exception as exc:
        logger.exception("job fetch crashed id=%s", job_id)
        verdict = _unexpected_verdict(exc)

    with ctx.session_factory() as db:
        if verdict is None:
            try:
                if isinstance(fetched, FetchedSeries):
                    verdict = apply_series(ctx, db, snapshot, subject, fetched)
                else:
                    verdict = apply_single(ctx, db, snapshot, subject, fetched)
            except Exception as exc:
                logger.exception("job apply crashed id=%s", job_id)
                db.rollback()
                verdict = _unexpected_verdict(exc)

        job = db.get(IngestionJob, job_id)
        if job is None or job.status != IngestionJobStatus.PROCESSING:
            # 处理期间被清理进程回收或被运维重置，放弃本次结果。
            logger.warning("job no longer processing, dropping result id=%s", job_id)
            db.rollback()
            return None
        finalized = finalize_job(db, job, verdict)
        db.commit()

    logger.info(
        "job finished id=%s status=%s url=%s",
        job_id,
        finalized.outcome.status,
        finalized.outcome.subject_url,
    )
    dispatch_notifications(ctx, finalized)

    if ctx.settings.purge_notified_jobs:
        purge_job(ctx, job_id)
    return finalized.outcome


def purge_job(ctx: WorkerContext, job_id: UUID) -> None:
    with ctx.session_factory() as db:
        db.execute(
            delete(IngestionJob)
            .where(IngestionJob.id == job_id)
            .where(IngestionJob.status.in_(TERMINAL_JOB_STATUSES))
        )
        db.commit()


def run_once(ctx: WorkerContext) -> bool:
    """领取并处理一个任务，队列为空时返回 False。"""
    with ctx.session_factory() as db:
        job = claim_next_job(db)
        if job is None:
            db.rollback()
            return False
        job_id = job.id
        db.commit()
    logger.info("claimed job id=%s", job_id)
    process_job(ctx, job_id)
    return True
