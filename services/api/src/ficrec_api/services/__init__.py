"""服务层能力导出集合。"""

from ficrec_api.services.admission import (
    AdmissionResult,
    approve_and_requeue,
    clear_jobs_for_url,
    detach_subscribers,
    enqueue_or_join,
    get_job,
    reset_stuck_jobs,
    subscribe,
)
from ficrec_api.services.eligibility import EligibilityGate, EligibilityPolicy, EligibilityResult, check_eligibility
from ficrec_api.services.locks import (
    GlobalLockPolicy,
    GlobalLockPolicyCache,
    LockResolver,
    ResolvedLocks,
    clear_lock,
    has_override,
    list_active_locks,
    record_subject_keys,
    set_global_lock_policy,
    set_lock,
    set_override,
    work_subject_keys,
)
from ficrec_api.services.merge import (
    MergeEngine,
    MergePatch,
    get_series_record,
    get_work_record,
    merge_work,
    series_merge_engine,
    work_merge_engine,
)
from ficrec_api.services.permissions import AUTOMATED_WRITER_TIER, bypasses_field_locks, normalize_tier, require_tier
from ficrec_api.services.series import SeriesMember, merge_series, select_primary
from ficrec_api.services.subjects import Subject, normalize_subject_url, parse_subject, subject_key

__all__ = [
    "AdmissionResult",
    "enqueue_or_join",
    "get_job",
    "reset_stuck_jobs",
    "approve_and_requeue",
    "clear_jobs_for_url",
    "subscribe",
    "detach_subscribers",
    "EligibilityGate",
    "EligibilityPolicy",
    "EligibilityResult",
    "check_eligibility",
    "GlobalLockPolicy",
    "GlobalLockPolicyCache",
    "LockResolver",
    "ResolvedLocks",
    "set_lock",
    "clear_lock",
    "list_active_locks",
    "set_override",
    "has_override",
    "set_global_lock_policy",
    "work_subject_keys",
    "record_subject_keys",
    "MergeEngine",
    "MergePatch",
    "work_merge_engine",
    "series_merge_engine",
    "merge_work",
    "get_work_record",
    "get_series_record",
    "AUTOMATED_WRITER_TIER",
    "bypasses_field_locks",
    "normalize_tier",
    "require_tier",
    "SeriesMember",
    "select_primary",
    "merge_series",
    "Subject",
    "parse_subject",
    "normalize_subject_url",
    "subject_key",
]
