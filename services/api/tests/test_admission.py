import threading
import time
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import Session, sessionmaker

from ficrec_api.core.errors import InsufficientTierError, InvalidJobStateError, JobNotFoundError, UnsupportedSubjectError
from ficrec_api.models.base import Base
from ficrec_api.models.enums import AdmissionStatus, BatchKind, IngestionJobStatus
from ficrec_api.models.queue import IngestionJob, QueueSubscriber
from ficrec_api.services.admission import (
    approve_and_requeue,
    clear_jobs_for_url,
    detach_subscribers,
    enqueue_or_join,
    get_job,
    list_subscriber_ids,
    reset_stuck_jobs,
)
from ficrec_api.services.locks import has_override, set_override

WORK_URL = "https://archiveofourown.org/works/100"


def _finish(db, job, status, **fields):
    job.status = status
    for key, value in fields.items():
        setattr(job, key, value)
    db.flush()


def test_first_request_creates_job_with_first_subscriber(db):
    result = enqueue_or_join(db, WORK_URL, "user-1")

    assert result.status == AdmissionStatus.CREATED
    assert result.job.status == IngestionJobStatus.PENDING
    assert result.job.batch_kind == BatchKind.SINGLE
    assert result.job.instant_candidate is True
    assert result.job.requested_by == ["user-1"]
    assert list_subscriber_ids(db, result.job.id) == ["user-1"]


def test_series_link_gets_series_batch_kind(db):
    result = enqueue_or_join(db, "https://archiveofourown.org/series/5", "user-1")

    assert result.job.batch_kind == BatchKind.SERIES


def test_instant_candidate_only_when_queue_is_idle(db):
    enqueue_or_join(db, WORK_URL, "user-1")
    second = enqueue_or_join(db, "https://archiveofourown.org/works/101", "user-2")

    assert second.job.instant_candidate is False


def test_overlapping_requests_share_one_job(session_factory):
    statuses = []
    for requester in ("user-1", "user-2", "user-2", "user-3"):
        with session_factory() as session:
            result = enqueue_or_join(session, f"{WORK_URL}/chapters/{len(statuses) + 1}", requester)
            session.commit()
            statuses.append(result.status)

    assert statuses[0] == AdmissionStatus.CREATED
    assert statuses[1:] == [AdmissionStatus.JOINED_PROCESSING] * 3
    with session_factory() as session:
        jobs = list(session.execute(select(IngestionJob)).scalars())
        assert len(jobs) == 1
        assert jobs[0].requested_by == ["user-1", "user-2", "user-3"]
        assert list_subscriber_ids(session, jobs[0].id) == ["user-1", "user-2", "user-3"]


def test_join_while_processing(db):
    job = enqueue_or_join(db, WORK_URL, "user-1").job
    _finish(db, job, IngestionJobStatus.PROCESSING)

    result = enqueue_or_join(db, WORK_URL, "user-2")

    assert result.status == AdmissionStatus.JOINED_PROCESSING
    assert result.job.id == job.id


def test_done_job_returns_cached_result_without_subscribing(db):
    job = enqueue_or_join(db, WORK_URL, "user-1").job
    detach_subscribers(db, job.id)
    _finish(db, job, IngestionJobStatus.DONE, result={"work_id": "100"})

    result = enqueue_or_join(db, WORK_URL, "user-2")

    assert result.status == AdmissionStatus.CACHED
    assert result.cached_result == {"work_id": "100"}
    assert list_subscriber_ids(db, job.id) == []


@pytest.mark.parametrize(
    ("status", "field", "text"),
    [
        (IngestionJobStatus.ERROR, "error_message", "not_found: parse service returned 404"),
        (IngestionJobStatus.REJECTED, "rejection_reason", "Detected multishipping: Castiel/Some Other"),
    ],
)
def test_failed_job_returns_cached_failure(db, status, field, text):
    job = enqueue_or_join(db, WORK_URL, "user-1").job
    detach_subscribers(db, job.id)
    _finish(db, job, status, **{field: text})

    result = enqueue_or_join(db, WORK_URL, "user-2")

    assert result.status == AdmissionStatus.CACHED_FAILURE
    assert result.failure_reason == text


def test_rejected_job_is_rearmed_once_override_exists(db):
    job = enqueue_or_join(db, WORK_URL, "user-1").job
    detach_subscribers(db, job.id)
    _finish(db, job, IngestionJobStatus.REJECTED, rejection_reason="Detected multishipping: x")
    set_override(db, subject_key="work:100", actor_id="mod-1", tier="mod")

    result = enqueue_or_join(db, WORK_URL, "user-2")

    assert result.status == AdmissionStatus.JOINED_PROCESSING
    assert result.job.status == IngestionJobStatus.PENDING
    assert result.job.rejection_reason is None
    assert list_subscriber_ids(db, job.id) == ["user-2"]


def test_unsupported_link_is_rejected_before_insert(db):
    with pytest.raises(UnsupportedSubjectError):
        enqueue_or_join(db, "https://example.com/works/1", "user-1")
    assert db.execute(select(func.count()).select_from(IngestionJob)).scalar_one() == 0


def test_reset_stuck_jobs(db):
    processing = enqueue_or_join(db, WORK_URL, "user-1").job
    errored = enqueue_or_join(db, "https://archiveofourown.org/works/101", "user-1").job
    _finish(db, processing, IngestionJobStatus.PROCESSING)
    _finish(db, errored, IngestionJobStatus.ERROR, error_message="boom")

    assert reset_stuck_jobs(db) == 1
    assert reset_stuck_jobs(db, include_errors=True) == 1
    db.expire_all()
    assert {job.status for job in db.execute(select(IngestionJob)).scalars()} == {IngestionJobStatus.PENDING}


def test_approve_and_requeue_creates_override_and_resubscribes_submitter(db):
    job = enqueue_or_join(db, WORK_URL, "user-1").job
    detach_subscribers(db, job.id)
    _finish(db, job, IngestionJobStatus.REJECTED, rejection_reason="Detected multishipping: x")

    approved = approve_and_requeue(db, job.id, actor_id="mod-1", actor_tier="mod")

    assert approved.status == IngestionJobStatus.PENDING
    assert has_override(db, ["work:100"])
    assert list_subscriber_ids(db, job.id) == ["user-1"]


def test_approve_requires_mod_and_rejected_state(db):
    job = enqueue_or_join(db, WORK_URL, "user-1").job

    with pytest.raises(InsufficientTierError):
        approve_and_requeue(db, job.id, actor_id="user-9", actor_tier="member")
    with pytest.raises(InvalidJobStateError):
        approve_and_requeue(db, job.id, actor_id="mod-1", actor_tier="mod")


def test_detach_subscribers_removes_rows(db):
    job = enqueue_or_join(db, WORK_URL, "user-1").job
    enqueue_or_join(db, WORK_URL, "user-2")

    assert detach_subscribers(db, job.id) == ["user-1", "user-2"]
    assert db.execute(select(func.count()).select_from(QueueSubscriber)).scalar_one() == 0


def test_get_job_raises_for_unknown_id(db):
    with pytest.raises(JobNotFoundError):
        get_job(db, uuid4())


def _file_engine(path):
    """每个会话独占连接的文件库，写事务以 BEGIN IMMEDIATE 开启，后到的写入等待先到者提交。"""
    engine = create_engine(f"sqlite+pysqlite:///{path}", connect_args={"check_same_thread": False, "timeout": 10})

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    return engine


def test_second_session_joins_job_inserted_by_uncommitted_first_session(tmp_path):
    engine = _file_engine(tmp_path / "admission.db")
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    outcome = {}

    def second_request():
        with factory() as session:
            result = enqueue_or_join(session, f"{WORK_URL}/chapters/3", "user-2")
            session.commit()
            outcome["status"] = result.status
            outcome["job_id"] = result.job.id

    try:
        with factory() as first:
            created = enqueue_or_join(first, WORK_URL, "user-1")
            created_id = created.job.id
            worker = threading.Thread(target=second_request)
            worker.start()
            # 第二个会话已开始时第一个会话仍未提交。
            time.sleep(0.2)
            assert worker.is_alive()
            first.commit()
        worker.join(timeout=10)

        assert created.status == AdmissionStatus.CREATED
        assert outcome["status"] == AdmissionStatus.JOINED_PROCESSING
        assert outcome["job_id"] == created_id
        with factory() as session:
            jobs = list(session.execute(select(IngestionJob)).scalars())
            assert len(jobs) == 1
            assert jobs[0].requested_by == ["user-1", "user-2"]
            assert list_subscriber_ids(session, jobs[0].id) == ["user-1", "user-2"]
    finally:
        engine.dispose()


def test_notes_and_additional_tags_are_kept_only_from_creating_request(db):
    created = enqueue_or_join(db, WORK_URL, "user-1", notes="Read the epilogue", additional_tags=["comfort read"])
    joined = enqueue_or_join(db, WORK_URL, "user-2", notes="ignored", additional_tags=["other"])

    assert joined.job.id == created.job.id
    assert joined.job.notes == "Read the epilogue"
    assert joined.job.additional_tags == ["comfort read"]


def test_clear_jobs_for_url_removes_job_and_subscribers(db):
    job = enqueue_or_join(db, WORK_URL, "user-1").job
    enqueue_or_join(db, WORK_URL, "user-2")
    _finish(db, job, IngestionJobStatus.ERROR, error_message="boom")

    assert clear_jobs_for_url(db, f"{WORK_URL}/chapters/9", actor_tier="mod") == 1
    assert db.execute(select(func.count()).select_from(IngestionJob)).scalar_one() == 0
    assert db.execute(select(func.count()).select_from(QueueSubscriber)).scalar_one() == 0

    again = enqueue_or_join(db, WORK_URL, "user-3")
    assert again.status == AdmissionStatus.CREATED


def test_clear_jobs_for_url_requires_mod_and_reports_nothing_to_clear(db):
    enqueue_or_join(db, WORK_URL, "user-1")

    with pytest.raises(InsufficientTierError):
        clear_jobs_for_url(db, WORK_URL, actor_tier="member")
    assert clear_jobs_for_url(db, "https://archiveofourown.org/works/555", actor_tier="mod") == 0
    with pytest.raises(UnsupportedSubjectError):
        clear_jobs_for_url(db, "https://example.com/works/1", actor_tier="mod")
