"""健康检查接口。"""

from sqlalchemy.orm import Session

from fastapi import APIRouter, Depends, Request, status

from ficrec_api.db.session import get_db
from ficrec_api.services.admission import count_active_jobs
from ficrec_api.utils.response import success
from ficrec_api.schemas.common import ErrorResponse, SuccessResponse
from ficrec_api.schemas.responses import HealthStatusData

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    description="用于容器编排系统检测服务进程是否存活。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def live(request: Request):
    """仅表示进程存活，不校验外部依赖。"""
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="查询入库队列在途任务数，同时验证数据库连通性。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def ready(request: Request, db: Session = Depends(get_db)):
    return success(request, {"status": "ready", "active_jobs": count_active_jobs(db)})
