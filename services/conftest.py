from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import ficrec_api.models  # noqa: F401
from ficrec_api.core.config import get_settings
from ficrec_api.db.session import get_db
from ficrec_api.main import app
from ficrec_api.models.base import Base
from ficrec_api.services.locks import GlobalLockPolicyCache

SERVICE_TOKEN = "api-test-service-token"


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(_type_, _compiler, **_kwargs):
    return "JSON"


def _build_sqlite_engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    # pysqlite 默认事务行为不支持 SAVEPOINT，按 SQLAlchemy 文档方式接管 BEGIN。
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = _build_sqlite_engine()
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def policy_cache() -> GlobalLockPolicyCache:
    return GlobalLockPolicyCache()


@pytest.fixture
def api_client(monkeypatch: pytest.MonkeyPatch, session_factory) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("FR_SERVICE_TOKEN", SERVICE_TOKEN)
    get_settings.cache_clear()
    app.dependency_overrides.clear()
    app.state.lock_policy_cache = GlobalLockPolicyCache()

    def override_get_db() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def actor_headers(actor_id: str = "user-1", tier: str = "member", token: str = SERVICE_TOKEN) -> dict[str, str]:
    return {"X-Service-Token": token, "X-Actor-Id": actor_id, "X-Actor-Tier": tier}


@pytest.fixture
def headers():
    """构造命令层转发的请求头。"""
    return actor_headers
