"""
Database connection and session management.

The scheduling engine is synchronous, so a single sync engine and
session factory serve both the API and the maintenance task.
"""

import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from lineuptv.config import get_config
from lineuptv.database.models.base import Base

logger = logging.getLogger(__name__)

_sync_engine: Optional[Engine] = None
_sync_session_factory: Optional[sessionmaker] = None


def _get_pool_kwargs(url: str) -> dict:
    """Get pool configuration for the database URL."""
    if "sqlite" in url:
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }

    return {
        "poolclass": QueuePool,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_sync_db(url: Optional[str] = None) -> Engine:
    """Initialize the database engine and create missing tables."""
    global _sync_engine, _sync_session_factory

    config = get_config()
    url = url or config.database.url

    _sync_engine = create_engine(
        url,
        echo=config.database.echo,
        future=True,
        **_get_pool_kwargs(url),
    )
    if "sqlite" in url:
        _enable_sqlite_foreign_keys(_sync_engine)

    _sync_session_factory = sessionmaker(
        _sync_engine,
        class_=Session,
        expire_on_commit=False,
    )

    Base.metadata.create_all(_sync_engine)
    logger.info(f"Database initialized: {url}")
    return _sync_engine


def get_sync_session() -> Session:
    """Get a synchronous database session."""
    if _sync_session_factory is None:
        init_sync_db()
    return _sync_session_factory()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions."""
    session = get_sync_session()
    try:
        yield session
    finally:
        session.close()


def close_db() -> None:
    """Dispose of the engine."""
    global _sync_engine, _sync_session_factory

    if _sync_engine is not None:
        _sync_engine.dispose()
        _sync_engine = None
        _sync_session_factory = None
        logger.info("Database connections closed")
