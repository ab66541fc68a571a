"""领域枚举定义。"""

from enum import StrEnum


class IngestionJobStatus(StrEnum):
    """入库任务状态。"""

    PENDING = "pending"  # 已创建，等待工作进程领取。
    PROCESSING = "processing"  # 工作进程处理中。
    DONE = "done"  # 单篇作品入库成功。
    SERIES_DONE = "series-done"  # 系列入库成功。
    ERROR = "error"  # 抓取失败或内部异常。
    REJECTED = "rejected"  # 内容准入校验未通过。


ACTIVE_JOB_STATUSES = frozenset({IngestionJobStatus.PENDING, IngestionJobStatus.PROCESSING})
SUCCESS_JOB_STATUSES = frozenset({IngestionJobStatus.DONE, IngestionJobStatus.SERIES_DONE})
FAILURE_JOB_STATUSES = frozenset({IngestionJobStatus.ERROR, IngestionJobStatus.REJECTED})
TERMINAL_JOB_STATUSES = SUCCESS_JOB_STATUSES | FAILURE_JOB_STATUSES


class BatchKind(StrEnum):
    """任务批处理类型。"""

    SINGLE = "single"  # 单篇作品链接。
    SERIES = "series"  # 系列链接，需要抓取多篇成员作品。


class SubjectKind(StrEnum):
    """外部主体类型。"""

    WORK = "work"
    SERIES = "series"


class AdmissionStatus(StrEnum):
    """入队结果状态。"""

    CREATED = "created"  # 新建任务，调用方为首个订阅者。
    JOINED_PROCESSING = "joined-processing"  # 已有在途任务，调用方加入订阅。
    CACHED = "cached"  # 已有成功结果，直接复用。
    CACHED_FAILURE = "cached-failure"  # 已有失败结果，返回失败原因。


class ActorTier(StrEnum):
    """操作者权限等级，按从低到高排列。"""

    NON_MEMBER = "non_member"  # 非社区成员。
    MEMBER = "member"  # 普通成员，受全部字段锁约束。
    MOD = "mod"  # 版主，可绕过字段锁。
    ADMIN = "admin"  # 管理员。
    SUPERADMIN = "superadmin"  # 超级管理员，可修改全局锁策略。


class Rating(StrEnum):
    """作品分级。"""

    GENERAL = "general audiences"
    TEEN = "teen and up audiences"
    MATURE = "mature"
    EXPLICIT = "explicit"
    NOT_RATED = "not rated"


class FetchErrorKind(StrEnum):
    """抓取失败分类。"""

    NOT_FOUND = "not_found"  # 目标不存在或已删除。
    FORBIDDEN = "forbidden"  # 需要登录或被限制访问。
    SITE_DEFENSE = "site_defense"  # 触发站点防护。
    CONNECTION_ERROR = "connection_error"  # 网络或上游服务异常。


class SeriesRejectionPolicy(StrEnum):
    """系列整体拒绝策略。"""

    ALL_MEMBERS = "all_members"  # 全部成员未通过准入才拒绝整个系列。
    ANY_MEMBER = "any_member"  # 任一成员未通过准入即拒绝整个系列。
