"""入库工作进程。

主流程:
1) 领取最早提交的 pending 任务
2) 按节奏抓取作品/系列元数据
3) 准入校验 + 合并入库，写入终态
4) 通知请求者，按随机间隔进入下一轮
清理进程在后台线程独立运行。
"""

import logging
import threading
from datetime import datetime, timezone

from ficrec_api.db.session import build_session_factory
from ficrec_api.services import EligibilityGate, EligibilityPolicy, GlobalLockPolicyCache
from ficrec_worker.config import Settings, get_settings
from ficrec_worker.fetcher import HttpMetadataFetcher
from ficrec_worker.pacing import JobPacer, PacingProfile, RateBudget
from ficrec_worker.pipeline import WorkerContext, run_once
from ficrec_worker.reaper import Reaper, start_reaper_thread
from ficrec_worker.sinks import (
    LoggingModerationSink,
    LoggingNotificationSink,
    WebhookModerationSink,
    WebhookNotificationSink,
)

logger = logging.getLogger("ficrec_worker")


def _setup_logging() -> None:
    """初始化日志输出格式与级别。"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _now_iso() -> str:
    """返回当前 UTC 时间的 ISO 字符串。"""
    return datetime.now(timezone.utc).isoformat()


def build_context(settings: Settings) -> WorkerContext:
    """按配置组装工作进程依赖。"""
    session_factory = build_session_factory(settings.database_url)

    if settings.notification_webhook_url:
        notification_sink = WebhookNotificationSink(
            settings.notification_webhook_url, timeout=settings.webhook_timeout_seconds
        )
    else:
        notification_sink = LoggingNotificationSink()
    if settings.moderation_webhook_url:
        moderation_sink = WebhookModerationSink(settings.moderation_webhook_url, timeout=settings.webhook_timeout_seconds)
    else:
        moderation_sink = LoggingModerationSink()

    return WorkerContext(
        session_factory=session_factory,
        fetcher=HttpMetadataFetcher(settings.fetcher_base_url, timeout=settings.fetcher_timeout_seconds),
        notification_sink=notification_sink,
        moderation_sink=moderation_sink,
        rate_budget=RateBudget(settings.rate_interval_seconds),
        pacer=JobPacer(PacingProfile.from_settings(settings)),
        gate=EligibilityGate(
            EligibilityPolicy(
                required_category=settings.eligibility_required_category,
                canonical_pairing=settings.eligibility_canonical_pairing,
            )
        ),
        lock_policy_cache=GlobalLockPolicyCache(),
        settings=settings,
    )


def run_worker_loop(ctx: WorkerContext, stop_event: threading.Event | None = None) -> None:
    """顺序处理任务，单个任务异常不会中断循环。"""
    while stop_event is None or not stop_event.is_set():
        try:
            worked = run_once(ctx)
            if not worked:
                # 队列为空时随机短暂休眠，降低数据库轮询压力。
                ctx.sleep(ctx.pacer.idle_wait())
                continue

            decision = ctx.pacer.after_job()
            if decision.long_pause:
                logger.info("long pause seconds=%.1f", decision.seconds)
            ctx.sleep(decision.seconds)
        except KeyboardInterrupt:
            logger.info("worker stopped")
            return
        except Exception:
            logger.exception("worker loop error")
            ctx.sleep(ctx.pacer.idle_wait())


def main() -> None:
    """工作进程入口。"""
    _setup_logging()
    settings = get_settings()
    ctx = build_context(settings)

    logger.info("worker started worker_id=%s at=%s", settings.worker_id, _now_iso())

    stop_event = threading.Event()
    start_reaper_thread(
        Reaper(
            ctx.session_factory,
            ctx.notification_sink,
            terminal_retention_seconds=settings.terminal_retention_seconds,
            stale_after_seconds=settings.stale_after_seconds,
        ),
        settings.reaper_interval_seconds,
        stop_event,
    )
    try:
        run_worker_loop(ctx)
    finally:
        stop_event.set()


if __name__ == "__main__":
    main()
