"""接口成功响应 `data` 字段结构定义。"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ficrec_api.schemas.common import BaseSchema


class HealthStatusData(BaseSchema):
    """健康检查返回结构。"""

    status: str = Field(description="健康状态值，常见为 ok 或 ready。")
    active_jobs: int | None = Field(default=None, description="就绪探针返回的在途任务数（pending + processing）。")


class IngestionJobData(BaseSchema):
    """入库任务详情结构。"""

    job_id: UUID = Field(description="任务 ID。")
    subject_url: str = Field(description="规范化主体链接。")
    status: str = Field(description="任务状态，例如 pending/processing/done。")
    batch_kind: str = Field(description="批处理类型，single 或 series。")
    requested_by: list[str] = Field(description="累计请求者。")
    submitted_at: datetime = Field(description="提交时间。")
    instant_candidate: bool = Field(description="创建时是否无其他在途任务。")
    result: dict[str, Any] | None = Field(default=None, description="成功结果摘要。")
    error_message: str | None = Field(default=None, description="失败原因。")
    rejection_reason: str | None = Field(default=None, description="准入拒绝原因。")
    notes: str | None = Field(default=None, description="创建请求附带的备注。")
    additional_tags: list[str] = Field(default_factory=list, description="创建请求附带的补充标签。")
    terminal: bool = Field(description="是否为终态任务。")


class AdmissionData(BaseSchema):
    """入队结果。"""

    status: str = Field(description="created/joined-processing/cached/cached-failure。")
    job: IngestionJobData = Field(description="对应任务。")
    cached_result: dict[str, Any] | None = Field(default=None, description="复用的成功结果。")
    failure_reason: str | None = Field(default=None, description="复用的失败原因。")


class ResetJobsData(BaseSchema):
    reset_count: int = Field(description="被重置的任务数。")


class ClearJobsData(BaseSchema):
    cleared_count: int = Field(description="被删除的任务数。")


class FieldLockData(BaseSchema):
    """字段锁记录。"""

    id: UUID = Field(description="锁记录 ID。")
    subject_key: str = Field(description="主体键。")
    field: str = Field(description="字段名。")
    locked: bool = Field(description="是否有效。")
    tier: str = Field(description="加锁人权限等级。")
    locked_by: str = Field(description="加锁人。")
    locked_at: datetime = Field(description="加锁时间。")
    unlocked_by: str | None = Field(default=None, description="解锁人。")
    unlocked_at: datetime | None = Field(default=None, description="解锁时间。")


class GlobalLockPolicyData(BaseSchema):
    fields: list[str] = Field(description="全局锁定字段。")
    automated_writers_respect: bool = Field(description="自动化写入是否遵守全局锁。")


class WorkRecordData(BaseSchema):
    """作品记录。"""

    work_id: str = Field(description="外部作品 ID。")
    url: str = Field(description="作品链接。")
    title: str = Field(description="标题。")
    authors: list[str] = Field(description="作者列表。")
    summary: str | None = Field(default=None)
    tags: list[str] = Field(default_factory=list)
    rating: str = Field(description="分级。")
    word_count: int | None = Field(default=None)
    chapters: str | None = Field(default=None)
    completion_status: str | None = Field(default=None)
    language: str | None = Field(default=None)
    published_on: date | None = Field(default=None)
    source_updated_on: date | None = Field(default=None)
    archive_warnings: list[str] = Field(default_factory=list)
    fandom_tags: list[str] = Field(default_factory=list)
    relationship_tags: list[str] = Field(default_factory=list)
    character_tags: list[str] = Field(default_factory=list)
    freeform_tags: list[str] = Field(default_factory=list)
    series_link: str | None = Field(default=None)
    is_primary_in_series: bool = Field(description="是否为系列主作品。")


class WorkUpdateData(BaseSchema):
    """手工编辑结果。"""

    work: WorkRecordData = Field(description="更新后的作品记录。")
    applied_fields: list[str] = Field(description="已写入字段。")
    blocked_fields: list[str] = Field(description="被字段锁拦截的字段。")
