import threading
from datetime import timedelta

from sqlalchemy import func, select

from ficrec_api.models.enums import IngestionJobStatus
from ficrec_api.models.queue import IngestionJob, QueueSubscriber
from ficrec_api.services import enqueue_or_join
from ficrec_api.utils.clock import utc_now
from ficrec_worker.reaper import STALE_JOB_MESSAGE, Reaper, start_reaper_thread, sweep
from worker_fakes import RecordingNotificationSink, work_url


def _seed(session_factory, work_id: str, status: IngestionJobStatus, age: timedelta, requesters=("u1",)):
    with session_factory() as session:
        job = None
        for requester in requesters:
            job = enqueue_or_join(session, work_url(work_id), requester).job
        job.status = status
        job.updated_at = utc_now() - age
        session.commit()
        return job.id


def _count(session_factory, model) -> int:
    with session_factory() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def test_expired_terminal_jobs_are_purged_with_subscribers(session_factory):
    old_id = _seed(session_factory, "1", IngestionJobStatus.DONE, timedelta(hours=4))
    fresh_id = _seed(session_factory, "2", IngestionJobStatus.ERROR, timedelta(hours=1))

    with session_factory() as session:
        report = sweep(session, now=utc_now(), terminal_retention_seconds=3 * 3600, stale_after_seconds=900)
        session.commit()

    assert report.purged_job_ids == [old_id]
    assert report.reclaimed == []
    with session_factory() as session:
        assert session.get(IngestionJob, old_id) is None
        assert session.get(IngestionJob, fresh_id) is not None
        remaining = session.execute(select(QueueSubscriber.job_id)).scalars().all()
    assert remaining == [fresh_id]


def test_stale_active_jobs_are_reclaimed_and_notified(session_factory):
    stale_id = _seed(session_factory, "1", IngestionJobStatus.PROCESSING, timedelta(minutes=30), ("u1", "u2"))
    stale_pending_id = _seed(session_factory, "2", IngestionJobStatus.PENDING, timedelta(minutes=20))
    busy_id = _seed(session_factory, "3", IngestionJobStatus.PROCESSING, timedelta(minutes=2))
    sink = RecordingNotificationSink()

    report = Reaper(session_factory, sink, terminal_retention_seconds=10800, stale_after_seconds=900).run_once()

    assert {item.outcome.job_id for item in report.reclaimed} == {stale_id, stale_pending_id}
    with session_factory() as session:
        stale = session.get(IngestionJob, stale_id)
        assert stale.status == IngestionJobStatus.ERROR
        assert stale.error_message == STALE_JOB_MESSAGE
        assert session.get(IngestionJob, stale_pending_id).status == IngestionJobStatus.ERROR
        assert session.get(IngestionJob, busy_id).status == IngestionJobStatus.PROCESSING
    notified = {outcome.job_id: requesters for outcome, requesters in sink.calls}
    assert notified[stale_id] == ["u1", "u2"]
    assert notified[stale_pending_id] == ["u1"]
    assert _count(session_factory, QueueSubscriber) == 1


def test_reclaimed_job_is_purged_after_retention(session_factory):
    job_id = _seed(session_factory, "1", IngestionJobStatus.PROCESSING, timedelta(minutes=30))
    reaper = Reaper(session_factory, RecordingNotificationSink(), terminal_retention_seconds=3600, stale_after_seconds=900)
    reaper.run_once()

    reaper.clock = lambda: utc_now() + timedelta(hours=2)
    report = reaper.run_once()

    assert report.purged_job_ids == [job_id]
    assert _count(session_factory, IngestionJob) == 0


def test_notification_failure_does_not_break_sweep(session_factory):
    _seed(session_factory, "1", IngestionJobStatus.PROCESSING, timedelta(minutes=30))
    sink = RecordingNotificationSink(fail=True)

    report = Reaper(session_factory, sink, stale_after_seconds=900).run_once()

    assert len(report.reclaimed) == 1
    assert len(sink.calls) == 1


def test_reaper_thread_runs_immediately_and_stops(session_factory):
    _seed(session_factory, "1", IngestionJobStatus.PROCESSING, timedelta(minutes=30))
    sink = RecordingNotificationSink()
    stop = threading.Event()

    thread = start_reaper_thread(Reaper(session_factory, sink), 3600, stop)
    for _ in range(50):
        if sink.calls:
            break
        stop.wait(0.05)
    stop.set()
    thread.join(timeout=2)

    assert not thread.is_alive()
    assert len(sink.calls) == 1
