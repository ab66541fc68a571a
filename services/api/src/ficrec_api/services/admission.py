"""入库任务入队与运维操作。

入队依赖 subject_url 唯一约束仲裁并发：先插入，冲突后再按已有任务状态分流，
不做“先查后插”，避免并发窗口产生重复任务。
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ficrec_api.core.errors import InvalidJobStateError, JobNotFoundError
from ficrec_api.models.catalog import WorkRecord
from ficrec_api.models.enums import (
    ACTIVE_JOB_STATUSES,
    SUCCESS_JOB_STATUSES,
    ActorTier,
    AdmissionStatus,
    BatchKind,
    IngestionJobStatus,
    SubjectKind,
)
from ficrec_api.models.queue import IngestionJob, QueueSubscriber
from ficrec_api.services.locks import has_override, set_override, work_subject_keys
from ficrec_api.services.permissions import require_tier
from ficrec_api.services.subjects import Subject, parse_subject
from ficrec_api.utils.clock import utc_now

# 并发删除（清理进程）导致冲突后查不到旧行时的重试次数。
_ADMISSION_ATTEMPTS = 3


@dataclass
class AdmissionResult:
    """入队结果。"""

    status: AdmissionStatus
    job: IngestionJob
    cached_result: dict[str, Any] | None = None
    failure_reason: str | None = None


def get_job(db: Session, job_id: UUID) -> IngestionJob:
    job = db.get(IngestionJob, job_id)
    if not job:
        raise JobNotFoundError("ingestion job not found", details={"job_id": str(job_id)})
    return job


def get_job_by_url(db: Session, subject_url: str) -> IngestionJob | None:
    return db.execute(select(IngestionJob).where(IngestionJob.subject_url == subject_url)).scalar_one_or_none()


def count_active_jobs(db: Session) -> int:
    return db.execute(
        select(func.count()).select_from(IngestionJob).where(IngestionJob.status.in_(ACTIVE_JOB_STATUSES))
    ).scalar_one()


def subscribe(db: Session, job: IngestionJob, requester_id: str) -> bool:
    """登记订阅者并累计请求者，重复订阅返回 False。"""
    if requester_id not in (job.requested_by or []):
        # JSON 列需整体赋值才能被识别为变更。
        job.requested_by = [*(job.requested_by or []), requester_id]
    exists = db.execute(
        select(QueueSubscriber.id)
        .where(QueueSubscriber.job_id == job.id)
        .where(QueueSubscriber.requester_id == requester_id)
    ).first()
    if exists:
        db.flush()
        return False
    try:
        with db.begin_nested():
            db.add(QueueSubscriber(job_id=job.id, requester_id=requester_id))
    except IntegrityError:
        return False
    return True


def list_subscriber_ids(db: Session, job_id: UUID) -> list[str]:
    return list(
        db.execute(
            select(QueueSubscriber.requester_id)
            .where(QueueSubscriber.job_id == job_id)
            .order_by(QueueSubscriber.created_at, QueueSubscriber.requester_id)
        ).scalars()
    )


def detach_subscribers(db: Session, job_id: UUID) -> list[str]:
    """删除并返回任务全部订阅者，删除先于通知，保证至多通知一次。"""
    requester_ids = list_subscriber_ids(db, job_id)
    if requester_ids:
        db.execute(delete(QueueSubscriber).where(QueueSubscriber.job_id == job_id))
        db.flush()
    return requester_ids


def subject_override_keys(db: Session, subject: Subject) -> list[str]:
    """豁免查询使用的主体键，作品同时继承所属系列的豁免。"""
    if subject.kind is SubjectKind.SERIES:
        return [subject.key]
    series_link = db.execute(
        select(WorkRecord.series_link).where(WorkRecord.work_id == subject.external_id)
    ).scalar_one_or_none()
    return work_subject_keys(subject.external_id, series_link)


def _rearm(job: IngestionJob) -> None:
    job.status = IngestionJobStatus.PENDING
    job.rejection_reason = None
    job.error_message = None
    job.result = None
    job.submitted_at = utc_now()
    job.instant_candidate = False


def _react_to_existing(db: Session, job: IngestionJob, subject: Subject, requester_id: str) -> AdmissionResult:
    status = IngestionJobStatus(job.status)
    if status in ACTIVE_JOB_STATUSES:
        subscribe(db, job, requester_id)
        return AdmissionResult(status=AdmissionStatus.JOINED_PROCESSING, job=job)
    if status in SUCCESS_JOB_STATUSES:
        return AdmissionResult(status=AdmissionStatus.CACHED, job=job, cached_result=job.result)
    if status == IngestionJobStatus.REJECTED and has_override(db, subject_override_keys(db, subject)):
        # 被拒任务在豁免登记后重新入队。
        _rearm(job)
        subscribe(db, job, requester_id)
        return AdmissionResult(status=AdmissionStatus.JOINED_PROCESSING, job=job)
    return AdmissionResult(
        status=AdmissionStatus.CACHED_FAILURE,
        job=job,
        failure_reason=job.rejection_reason or job.error_message,
    )


def enqueue_or_join(
    db: Session,
    url: str,
    requester_id: str,
    *,
    notes: str | None = None,
    additional_tags: list[str] | None = None,
) -> AdmissionResult:
    """创建入库任务，或加入/复用同一链接已有任务。

    notes 与 additional_tags 只随新建任务保存，加入或复用已有任务时忽略。
    调用方负责提交事务。
    """
    subject = parse_subject(url)
    batch_kind = BatchKind.SERIES if subject.kind is SubjectKind.SERIES else BatchKind.SINGLE

    for _ in range(_ADMISSION_ATTEMPTS):
        instant_candidate = count_active_jobs(db) == 0
        job = IngestionJob(
            subject_url=subject.url,
            status=IngestionJobStatus.PENDING,
            batch_kind=batch_kind,
            requested_by=[requester_id],
            submitted_at=utc_now(),
            instant_candidate=instant_candidate,
            notes=notes or None,
            additional_tags=list(additional_tags or []),
        )
        try:
            with db.begin_nested():
                db.add(job)
                db.flush()
                db.add(QueueSubscriber(job_id=job.id, requester_id=requester_id))
        except IntegrityError:
            existing = get_job_by_url(db, subject.url)
            if existing is None:
                continue
            return _react_to_existing(db, existing, subject, requester_id)
        return AdmissionResult(status=AdmissionStatus.CREATED, job=job)

    raise InvalidJobStateError("could not admit job after repeated conflicts", details={"url": subject.url})


def reset_stuck_jobs(db: Session, *, include_errors: bool = False) -> int:
    """将处理中（可选含失败）的任务退回待处理，返回影响行数。"""
    statuses = [IngestionJobStatus.PROCESSING]
    if include_errors:
        statuses.append(IngestionJobStatus.ERROR)
    result = db.execute(
        update(IngestionJob)
        .where(IngestionJob.status.in_(statuses))
        .values(status=IngestionJobStatus.PENDING, error_message=None)
        .execution_options(synchronize_session=False)
    )
    db.flush()
    return result.rowcount or 0


def approve_and_requeue(db: Session, job_id: UUID, *, actor_id: str, actor_tier: str) -> IngestionJob:
    """为被拒任务登记豁免并重新入队，原提交者重新订阅。"""
    require_tier(actor_tier, ActorTier.MOD)
    job = get_job(db, job_id)
    if job.status != IngestionJobStatus.REJECTED:
        raise InvalidJobStateError(
            "only rejected jobs can be approved",
            details={"job_id": str(job_id), "status": job.status},
        )
    subject = parse_subject(job.subject_url)
    set_override(db, subject_key=subject.key, actor_id=actor_id, tier=actor_tier)
    _rearm(job)
    if job.requested_by:
        subscribe(db, job, job.requested_by[0])
    db.flush()
    return job


def clear_jobs_for_url(db: Session, url: str, *, actor_tier: str) -> int:
    """删除链接对应的任务及其订阅者，返回删除的任务数。

    删除后同一链接可立即重新提交；处理中的任务被删除时，工作进程放弃其结果。
    """
    require_tier(actor_tier, ActorTier.MOD)
    subject = parse_subject(url)
    job_ids = list(
        db.execute(select(IngestionJob.id).where(IngestionJob.subject_url == subject.url)).scalars()
    )
    if not job_ids:
        return 0
    db.execute(delete(QueueSubscriber).where(QueueSubscriber.job_id.in_(job_ids)))
    result = db.execute(
        delete(IngestionJob).where(IngestionJob.id.in_(job_ids)).execution_options(synchronize_session=False)
    )
    db.flush()
    return result.rowcount or 0
