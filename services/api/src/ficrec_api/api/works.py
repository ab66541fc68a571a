"""作品手工编辑接口。"""

from typing import Any

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.orm import Session

from ficrec_api.core.errors import RecordNotFoundError
from ficrec_api.db.session import get_db
from ficrec_api.dependencies import ActorContext, get_actor_context, get_lock_policy_cache
from ficrec_api.models.catalog import WorkRecord
from ficrec_api.schemas.common import ErrorResponse, SuccessResponse
from ficrec_api.schemas.metadata import normalize_rating
from ficrec_api.schemas.requests import WorkUpdateRequest
from ficrec_api.schemas.responses import WorkRecordData, WorkUpdateData
from ficrec_api.services import (
    GlobalLockPolicyCache,
    LockResolver,
    get_work_record,
    record_subject_keys,
    work_merge_engine,
)
from ficrec_api.utils.response import success

router = APIRouter(prefix="/works", tags=["works"])


def serialize_work(record: WorkRecord) -> dict[str, Any]:
    return WorkRecordData.model_validate(record).model_dump()


@router.patch(
    "/{work_id}",
    summary="手工编辑作品",
    description="按操作者等级合并字段；member 等级的修改受字段锁约束，被拦截字段在响应中列出。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[WorkUpdateData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def update_work(
    request: Request,
    payload: WorkUpdateRequest,
    work_id: str = Path(..., description="外部作品 ID。"),
    ctx: ActorContext = Depends(get_actor_context),
    cache: GlobalLockPolicyCache = Depends(get_lock_policy_cache),
    db: Session = Depends(get_db),
):
    record = get_work_record(db, work_id)
    if record is None:
        raise RecordNotFoundError("work record not found", details={"work_id": work_id})

    incoming = payload.model_dump(exclude_unset=True)
    if "rating" in incoming:
        incoming["rating"] = normalize_rating(incoming["rating"])
    locks = LockResolver(db, cache).resolve(record_subject_keys(record))
    patch = work_merge_engine.diff(record, incoming, locks, ctx.tier)
    work_merge_engine.apply(db, record, patch)
    db.commit()
    db.refresh(record)
    return success(
        request,
        {
            "work": serialize_work(record),
            "applied_fields": sorted(patch.changes),
            "blocked_fields": patch.blocked,
        },
    )
