"""字段锁与准入豁免接口。"""

from typing import Any

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.orm import Session

from ficrec_api.db.session import get_db
from ficrec_api.dependencies import (
    ActorContext,
    get_actor_context,
    get_lock_policy_cache,
    require_mod_context,
    require_superadmin_context,
)
from ficrec_api.models.lock import FieldLock
from ficrec_api.schemas.common import ErrorResponse, SuccessResponse
from ficrec_api.schemas.requests import GlobalLockPolicyRequest, LockRequest, OverrideRequest
from ficrec_api.schemas.responses import FieldLockData, GlobalLockPolicyData
from ficrec_api.services import (
    GlobalLockPolicyCache,
    clear_lock,
    list_active_locks,
    set_global_lock_policy,
    set_lock,
    set_override,
)
from ficrec_api.utils.response import success

router = APIRouter(prefix="/locks", tags=["locks"])


def serialize_lock(lock: FieldLock) -> dict[str, Any]:
    return FieldLockData.model_validate(lock).model_dump()


@router.put(
    "",
    summary="加锁",
    description="锁定主体字段，锁定后 member 等级的写入不会覆盖该字段。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[FieldLockData],
    responses={403: {"model": ErrorResponse}},
)
def put_lock(
    request: Request,
    payload: LockRequest,
    ctx: ActorContext = Depends(require_mod_context),
    db: Session = Depends(get_db),
):
    lock = set_lock(db, subject_key=payload.subject_key, field=payload.field, tier=ctx.tier, actor_id=ctx.actor_id)
    db.commit()
    db.refresh(lock)
    return success(request, serialize_lock(lock))


@router.delete(
    "",
    summary="解锁",
    description="解除字段锁，历史记录保留。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[FieldLockData],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def delete_lock(
    request: Request,
    payload: LockRequest,
    ctx: ActorContext = Depends(require_mod_context),
    db: Session = Depends(get_db),
):
    lock = clear_lock(
        db,
        subject_key=payload.subject_key,
        field=payload.field,
        actor_id=ctx.actor_id,
        actor_tier=ctx.tier,
    )
    db.commit()
    db.refresh(lock)
    return success(request, serialize_lock(lock))


@router.post(
    "/overrides",
    summary="登记准入豁免",
    description="主体后续入库不再执行内容准入校验，豁免永久有效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[FieldLockData],
    responses={403: {"model": ErrorResponse}},
)
def post_override(
    request: Request,
    payload: OverrideRequest,
    ctx: ActorContext = Depends(require_mod_context),
    db: Session = Depends(get_db),
):
    lock = set_override(db, subject_key=payload.subject_key, actor_id=ctx.actor_id, tier=ctx.tier)
    db.commit()
    db.refresh(lock)
    return success(request, serialize_lock(lock))


@router.put(
    "/global",
    summary="更新全局锁策略",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[GlobalLockPolicyData],
    responses={403: {"model": ErrorResponse}},
)
def put_global_policy(
    request: Request,
    payload: GlobalLockPolicyRequest,
    _: ActorContext = Depends(require_superadmin_context),
    cache: GlobalLockPolicyCache = Depends(get_lock_policy_cache),
    db: Session = Depends(get_db),
):
    policy = set_global_lock_policy(
        db,
        fields=payload.fields,
        automated_writers_respect=payload.automated_writers_respect,
        cache=cache,
    )
    db.commit()
    return success(
        request,
        {"fields": sorted(policy.fields), "automated_writers_respect": policy.automated_writers_respect},
    )


@router.get(
    "/{subject_key}",
    summary="查询主体有效锁",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[FieldLockData]],
    responses={401: {"model": ErrorResponse}},
)
def read_locks(
    request: Request,
    subject_key: str = Path(..., description="主体键，形如 work:<id>。"),
    _: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    return success(request, [serialize_lock(lock) for lock in list_active_locks(db, subject_key)])
