"""作品目录模型。"""

from datetime import date

from sqlalchemy import Boolean, Date, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ficrec_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from ficrec_api.models.enums import Rating


class WorkRecord(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """单篇作品的规范化元数据。"""

    __tablename__ = "work_records"
    __table_args__ = (
        UniqueConstraint("url", name="uk_work_record_url"),
        UniqueConstraint("work_id", name="uk_work_record_work_id"),
    )

    # 规范化作品链接。
    url: Mapped[str] = mapped_column(String(512), nullable=False)
    # 外部站点作品 ID。
    work_id: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    # 作者列表，顺序有意义。
    authors: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    summary: Mapped[str | None] = mapped_column(Text)
    # 自由文本标签。
    tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    rating: Mapped[str] = mapped_column(String(32), nullable=False, default=Rating.NOT_RATED)
    word_count: Mapped[int | None] = mapped_column(Integer)
    # 章节进度，例如 3/10 或 5/?。
    chapters: Mapped[str | None] = mapped_column(String(32))
    completion_status: Mapped[str | None] = mapped_column(String(32))
    language: Mapped[str | None] = mapped_column(String(64))
    published_on: Mapped[date | None] = mapped_column(Date)
    source_updated_on: Mapped[date | None] = mapped_column(Date)
    hits: Mapped[int | None] = mapped_column(Integer)
    kudos: Mapped[int | None] = mapped_column(Integer)
    bookmarks: Mapped[int | None] = mapped_column(Integer)
    comments: Mapped[int | None] = mapped_column(Integer)
    archive_warnings: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    fandom_tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    relationship_tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    character_tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    freeform_tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    # 所属系列的外部 ID。
    series_link: Mapped[str | None] = mapped_column(String(32), index=True)
    is_primary_in_series: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # 首次推荐者。
    created_by: Mapped[str | None] = mapped_column(String(64))


class SeriesRecord(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """系列聚合记录。"""

    __tablename__ = "series_records"
    __table_args__ = (
        UniqueConstraint("url", name="uk_series_record_url"),
        UniqueConstraint("series_id", name="uk_series_record_series_id"),
    )

    url: Mapped[str] = mapped_column(String(512), nullable=False)
    # 外部站点系列 ID。
    series_id: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    # 成员作品 ID，保持系列页顺序。
    work_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    authors: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    work_count: Mapped[int | None] = mapped_column(Integer)
    word_count: Mapped[int | None] = mapped_column(Integer)
    completion_status: Mapped[str | None] = mapped_column(String(32))
    # 主作品的外部 ID，决定系列展示内容。
    primary_work_id: Mapped[str | None] = mapped_column(String(32))
