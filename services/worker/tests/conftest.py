import random
from typing import Any

import pytest

from ficrec_api.services import EligibilityGate, GlobalLockPolicyCache
from ficrec_api.services.runtime_config import INSTANT_SUPPRESS_THRESHOLD_KEY, set_config_value
from ficrec_worker.config import Settings
from ficrec_worker.pacing import JobPacer, RateBudget
from ficrec_worker.pipeline import WorkerContext
from worker_fakes import FakeFetcher, RecordingModerationSink, RecordingNotificationSink


@pytest.fixture
def build_ctx(session_factory):
    """按需组装工作进程上下文，睡眠调用只记录不等待。"""

    def _build(fetcher: FakeFetcher, notification_sink=None, **settings_overrides: Any) -> WorkerContext:
        sleeps: list[float] = []
        ctx = WorkerContext(
            session_factory=session_factory,
            fetcher=fetcher,
            notification_sink=notification_sink or RecordingNotificationSink(),
            moderation_sink=RecordingModerationSink(),
            rate_budget=RateBudget(6.0, clock=lambda: 0.0),
            pacer=JobPacer(rng=random.Random(7)),
            gate=EligibilityGate(),
            lock_policy_cache=GlobalLockPolicyCache(),
            settings=Settings(**settings_overrides),
            sleep=sleeps.append,
        )
        ctx.sleeps = sleeps
        return ctx

    return _build


@pytest.fixture
def notify_everyone(session_factory):
    """关闭即时任务静默，便于断言每次通知。"""
    with session_factory() as session:
        set_config_value(session, INSTANT_SUPPRESS_THRESHOLD_KEY, "0")
        session.commit()
