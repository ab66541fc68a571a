"""抓取解析服务返回的规范化元数据结构。

解析服务本身不在本仓库内，这里只约定它返回的数据形状，
并在入口处完成分级、标签与计数字段的规范化。
"""

from datetime import date

from pydantic import Field, field_validator

from ficrec_api.models.enums import Rating
from ficrec_api.schemas.common import BaseSchema

UNKNOWN_AUTHOR = "Anonymous"


def normalize_rating(value: str | None) -> str:
    """将站点原始分级映射到标准分级。"""
    if not value or not value.strip():
        return Rating.NOT_RATED
    raw = value.strip().lower()
    if raw.startswith("explicit"):
        return Rating.EXPLICIT
    if raw == "mature":
        return Rating.MATURE
    if raw in {"general audiences", "g"}:
        return Rating.GENERAL
    if raw in {"teen and up audiences", "t"}:
        return Rating.TEEN
    return Rating.NOT_RATED


def clean_tags(values: list[str] | None) -> list[str]:
    """去除空白与重复标签，保留首次出现顺序。"""
    seen: set[str] = set()
    cleaned: list[str] = []
    for value in values or []:
        tag = " ".join(str(value).split())
        if tag and tag not in seen:
            seen.add(tag)
            cleaned.append(tag)
    return cleaned


class WorkMetadata(BaseSchema):
    """单篇作品元数据。"""

    url: str = Field(description="作品链接。")
    title: str = Field(min_length=1, description="作品标题。")
    authors: list[str] = Field(default_factory=list, description="作者列表，顺序有意义。")
    summary: str | None = Field(default=None, description="作品简介。")
    tags: list[str] = Field(default_factory=list, description="自由文本标签。")
    rating: str = Field(default=Rating.NOT_RATED, description="作品分级。")
    word_count: int | None = Field(default=None, ge=0, description="字数。")
    chapters: str | None = Field(default=None, description="章节进度。")
    completion_status: str | None = Field(default=None, description="完结状态。")
    language: str | None = Field(default=None, description="语言。")
    published_on: date | None = Field(default=None, description="首发日期。")
    source_updated_on: date | None = Field(default=None, description="站点更新日期。")
    hits: int | None = Field(default=None, ge=0)
    kudos: int | None = Field(default=None, ge=0)
    bookmarks: int | None = Field(default=None, ge=0)
    comments: int | None = Field(default=None, ge=0)
    archive_warnings: list[str] = Field(default_factory=list, description="内容警告。")
    fandom_tags: list[str] = Field(default_factory=list)
    relationship_tags: list[str] = Field(default_factory=list)
    character_tags: list[str] = Field(default_factory=list)
    freeform_tags: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        title = value.strip()
        if not title:
            raise ValueError("title must not be blank")
        return title

    @field_validator("authors")
    @classmethod
    def ensure_authors(cls, value: list[str]) -> list[str]:
        """作者列表不能为空，缺失时使用匿名占位。"""
        authors = [author.strip() for author in value if author and author.strip()]
        return authors or [UNKNOWN_AUTHOR]

    @field_validator("rating", mode="before")
    @classmethod
    def coerce_rating(cls, value: str | None) -> str:
        return normalize_rating(value)

    @field_validator(
        "tags",
        "archive_warnings",
        "fandom_tags",
        "relationship_tags",
        "character_tags",
        "freeform_tags",
    )
    @classmethod
    def clean_tag_lists(cls, value: list[str]) -> list[str]:
        return clean_tags(value)


class SeriesMetadata(BaseSchema):
    """系列页元数据，只含成员链接，成员详情需逐篇抓取。"""

    url: str = Field(description="系列链接。")
    name: str = Field(min_length=1, description="系列名称。")
    summary: str | None = Field(default=None, description="系列简介。")
    authors: list[str] = Field(default_factory=list, description="作者列表。")
    work_urls: list[str] = Field(default_factory=list, description="成员作品链接，保持系列页顺序。")
    work_count: int | None = Field(default=None, ge=0)
    word_count: int | None = Field(default=None, ge=0)
    completion_status: str | None = Field(default=None)

    @field_validator("authors")
    @classmethod
    def ensure_authors(cls, value: list[str]) -> list[str]:
        authors = [author.strip() for author in value if author and author.strip()]
        return authors or [UNKNOWN_AUTHOR]
