"""入库队列接口。"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.orm import Session

from ficrec_api.db.session import get_db
from ficrec_api.dependencies import ActorContext, get_actor_context, require_mod_context
from ficrec_api.models.enums import TERMINAL_JOB_STATUSES
from ficrec_api.models.queue import IngestionJob
from ficrec_api.schemas.common import ErrorResponse, SuccessResponse
from ficrec_api.schemas.requests import ClearJobsRequest, EnqueueJobRequest, ResetJobsRequest
from ficrec_api.schemas.responses import AdmissionData, ClearJobsData, IngestionJobData, ResetJobsData
from ficrec_api.services import (
    approve_and_requeue,
    clear_jobs_for_url,
    enqueue_or_join,
    get_job,
    reset_stuck_jobs,
)
from ficrec_api.utils.response import success

router = APIRouter(prefix="/queue", tags=["queue"])


def serialize_job(job: IngestionJob) -> dict[str, Any]:
    return {
        "job_id": job.id,
        "subject_url": job.subject_url,
        "status": job.status,
        "batch_kind": job.batch_kind,
        "requested_by": list(job.requested_by or []),
        "submitted_at": job.submitted_at,
        "instant_candidate": job.instant_candidate,
        "result": job.result,
        "error_message": job.error_message,
        "rejection_reason": job.rejection_reason,
        "notes": job.notes,
        "additional_tags": list(job.additional_tags or []),
        "terminal": job.status in TERMINAL_JOB_STATUSES,
    }


@router.post(
    "/jobs",
    summary="提交入库链接",
    description="创建入库任务，或加入同一链接的在途任务，或直接复用已有结果。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AdmissionData],
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def enqueue_job(
    request: Request,
    payload: EnqueueJobRequest,
    ctx: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    requester_id = (payload.requester_id or ctx.actor_id).strip()
    result = enqueue_or_join(
        db,
        payload.url,
        requester_id,
        notes=payload.notes,
        additional_tags=payload.additional_tags,
    )
    db.commit()
    db.refresh(result.job)
    return success(
        request,
        {
            "status": result.status,
            "job": serialize_job(result.job),
            "cached_result": result.cached_result,
            "failure_reason": result.failure_reason,
        },
    )


@router.get(
    "/jobs/{job_id}",
    summary="查询入库任务",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[IngestionJobData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def read_job(
    request: Request,
    job_id: UUID = Path(..., description="任务 ID。"),
    _: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    return success(request, serialize_job(get_job(db, job_id)))


@router.post(
    "/jobs/{job_id}/approve",
    summary="豁免并重新入队",
    description="为被拒任务的主体登记准入豁免，任务回到待处理，原提交者重新订阅。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[IngestionJobData],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def approve_job(
    request: Request,
    job_id: UUID = Path(..., description="任务 ID。"),
    ctx: ActorContext = Depends(require_mod_context),
    db: Session = Depends(get_db),
):
    job = approve_and_requeue(db, job_id, actor_id=ctx.actor_id, actor_tier=ctx.tier)
    db.commit()
    db.refresh(job)
    return success(request, serialize_job(job))


@router.post(
    "/reset",
    summary="重置卡住任务",
    description="将处理中（可选含失败）的任务退回待处理。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ResetJobsData],
    responses={403: {"model": ErrorResponse}},
)
def reset_jobs(
    request: Request,
    payload: ResetJobsRequest | None = None,
    _: ActorContext = Depends(require_mod_context),
    db: Session = Depends(get_db),
):
    count = reset_stuck_jobs(db, include_errors=bool(payload and payload.include_errors))
    db.commit()
    return success(request, {"reset_count": count})


@router.post(
    "/clear",
    summary="清除链接任务",
    description="删除链接对应的任务及其订阅者，之后同一链接可立即重新提交。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ClearJobsData],
    responses={403: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def clear_jobs(
    request: Request,
    payload: ClearJobsRequest,
    ctx: ActorContext = Depends(require_mod_context),
    db: Session = Depends(get_db),
):
    count = clear_jobs_for_url(db, payload.url, actor_tier=ctx.tier)
    db.commit()
    return success(request, {"cleared_count": count})
