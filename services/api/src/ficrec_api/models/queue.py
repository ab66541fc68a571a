"""入库队列模型。

包含入库任务与任务订阅者。
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ficrec_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from ficrec_api.models.enums import BatchKind, IngestionJobStatus


class IngestionJob(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """外部链接入库任务，每个主体链接唯一一行。"""

    __tablename__ = "ingestion_jobs"
    __table_args__ = (UniqueConstraint("subject_url", name="uk_ingestion_job_subject_url"),)

    # 规范化后的主体链接，唯一约束是入队仲裁点。
    subject_url: Mapped[str] = mapped_column(String(512), nullable=False)
    # 任务状态（pending/processing/done/series-done/error/rejected）。
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=IngestionJobStatus.PENDING, index=True)
    # 批处理类型（single/series）。
    batch_kind: Mapped[str] = mapped_column(String(16), nullable=False, default=BatchKind.SINGLE)
    # 累计的请求者标识列表，按首次请求顺序。
    requested_by: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    # 提交时间，用于领取顺序与即时通知判断。
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    # 创建时无其他在途任务则为真。
    instant_candidate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 成功结果摘要。
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    # 失败原因。
    error_message: Mapped[str | None] = mapped_column(Text)
    # 准入拒绝原因。
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    # 创建请求附带的备注，仅首个请求者可填写。
    notes: Mapped[str | None] = mapped_column(Text)
    # 创建请求附带的补充标签，入库时并入作品 tags。
    additional_tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)


class QueueSubscriber(Base, UUIDPrimaryKeyMixin):
    """任务订阅者，任务进入终态并完成通知后删除。"""

    __tablename__ = "queue_subscribers"
    __table_args__ = (UniqueConstraint("job_id", "requester_id", name="uk_queue_subscriber"),)

    # 订阅的任务 ID。
    job_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 请求者标识（外部聊天平台用户 ID）。
    requester_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
