"""数据库会话管理。

接口进程与工作进程共用同一套引擎参数，工作进程通过 build_session_factory 自建会话工厂。
"""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from ficrec_api.core.config import get_settings


def build_session_factory(database_url: str) -> sessionmaker:
    """创建引擎与会话工厂，开启连接预检查以减少僵尸连接影响。"""
    engine = create_engine(database_url, future=True, pool_pre_ping=True)
    # 关闭 autoflush：入队仲裁依赖显式 flush 触发唯一约束冲突。
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


SessionLocal = build_session_factory(get_settings().database_url)


def get_db() -> Generator[Session, None, None]:
    """为每个请求提供独立数据库会话。"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
