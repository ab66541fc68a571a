"""接口请求结构。"""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ficrec_api.schemas.metadata import clean_tags


class EnqueueJobRequest(BaseModel):
    """入队请求体。"""

    url: str = Field(min_length=1, max_length=512, description="作品或系列链接。", examples=["https://archiveofourown.org/works/123456"])
    requester_id: str | None = Field(
        default=None,
        max_length=64,
        description="请求者外部用户 ID，缺省时使用 X-Actor-Id。",
    )
    notes: str | None = Field(default=None, max_length=2000, description="推荐备注，仅在新建任务时保存。")
    additional_tags: list[str] = Field(
        default_factory=list,
        description="补充标签，仅在新建任务时保存，入库时并入作品标签。",
        examples=[["comfort read", "found family"]],
    )

    @field_validator("additional_tags")
    @classmethod
    def normalize_additional_tags(cls, value: list[str]) -> list[str]:
        return clean_tags(value)


class ClearJobsRequest(BaseModel):
    """清除链接任务请求体。"""

    url: str = Field(min_length=1, max_length=512, description="需要清除任务的作品或系列链接。")


class ResetJobsRequest(BaseModel):
    """重置卡住任务请求体。"""

    include_errors: bool = Field(default=False, description="是否同时重置失败任务。")


class LockRequest(BaseModel):
    """加锁/解锁请求体。"""

    subject_key: str = Field(min_length=1, max_length=64, description="主体键，形如 work:<id> 或 series:<id>。")
    field: str = Field(min_length=1, max_length=64, description="字段名，ALL 表示全部字段。")


class OverrideRequest(BaseModel):
    """登记准入豁免请求体。"""

    subject_key: str = Field(min_length=1, max_length=64, description="主体键，形如 work:<id> 或 series:<id>。")


class GlobalLockPolicyRequest(BaseModel):
    """全局锁策略请求体。"""

    fields: list[str] = Field(default_factory=list, description="对所有主体生效的锁定字段。")
    automated_writers_respect: bool = Field(default=True, description="自动化写入是否遵守全局锁。")


class WorkUpdateRequest(BaseModel):
    """手工编辑作品请求体，仅提交需要修改的字段。"""

    title: str | None = Field(default=None, min_length=1, description="作品标题。")
    authors: list[str] | None = Field(default=None, min_length=1, description="作者列表，至少一位。")
    summary: str | None = Field(default=None, description="作品简介。")
    tags: list[str] | None = Field(default=None, description="自由文本标签。")
    rating: str | None = Field(default=None, description="作品分级。")
    word_count: int | None = Field(default=None, ge=0)
    chapters: str | None = Field(default=None)
    completion_status: str | None = Field(default=None)
    language: str | None = Field(default=None)
    published_on: date | None = Field(default=None)
    source_updated_on: date | None = Field(default=None)
    archive_warnings: list[str] | None = Field(default=None)
    fandom_tags: list[str] | None = Field(default=None)
    relationship_tags: list[str] | None = Field(default=None)
    character_tags: list[str] | None = Field(default=None)
    freeform_tags: list[str] | None = Field(default=None)

    @field_validator(
        "title",
        "authors",
        "tags",
        "archive_warnings",
        "fandom_tags",
        "relationship_tags",
        "character_tags",
        "freeform_tags",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        """标题与列表字段不可显式置空；清空标签请提交空列表。"""
        if value is None:
            raise ValueError("field cannot be null")
        return value
