"""字段锁与运行时配置模型。"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ficrec_api.models.base import Base, UUIDPrimaryKeyMixin
from ficrec_api.models.enums import ActorTier

# 保留字段名：锁定主体全部字段。
ALL_FIELDS = "ALL"
# 保留字段名：准入校验豁免。
VALIDATION_OVERRIDE_FIELD = "validation_override"


class FieldLock(Base, UUIDPrimaryKeyMixin):
    """字段锁记录。

    解锁时仅翻转 locked 并记录解锁人，历史行保留用于审计，不参与当前判定。
    """

    __tablename__ = "field_locks"

    # 主体键，形如 work:<id> 或 series:<id>。
    subject_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # 字段名，ALL 表示全部字段。
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # 加锁人权限等级。
    tier: Mapped[str] = mapped_column(String(32), nullable=False, default=ActorTier.MOD)
    locked_by: Mapped[str] = mapped_column(String(64), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    unlocked_by: Mapped[str | None] = mapped_column(String(64))
    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class AppConfig(Base):
    """运行时键值配置，由特权操作者维护。"""

    __tablename__ = "app_config"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
