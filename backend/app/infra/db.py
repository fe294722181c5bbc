"""Async engine and session plumbing.

PostgreSQL gets a bounded pool and a server-side statement timeout. SQLite
(dev and tests) gets a busy timeout long enough for writers queued behind
``BEGIN IMMEDIATE`` and enforced foreign keys.
"""

import logging
from typing import Any, AsyncGenerator

from sqlalchemy import event
from sqlalchemy.exc import TimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.settings import settings

Base = declarative_base()

# Registers every mapped class on Base.metadata.
import app.infra.models  # noqa: F401,E402

SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

logger = logging.getLogger(__name__)


def is_postgres_url(url: str) -> bool:
    return url.startswith(("postgresql://", "postgresql+"))


def _engine_kwargs(url: str) -> dict[str, Any]:
    if is_postgres_url(url):
        return {
            "pool_pre_ping": True,
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
            "pool_timeout": settings.database_pool_timeout_seconds,
            "connect_args": {
                "server_settings": {
                    "statement_timeout": str(int(settings.database_statement_timeout_ms)),
                },
            },
        }
    return {
        "pool_pre_ping": True,
        "connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
    }


def build_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(url, **_engine_kwargs(url))
    if not is_postgres_url(url):
        _enable_sqlite_foreign_keys(engine)
    _log_pool_timeouts(engine)
    return engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _engine, _session_factory
    if _session_factory is None:
        _engine = build_engine(settings.database_url)
        _session_factory = async_sessionmaker(
            _engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    session_factory = _get_session_factory()
    try:
        async with session_factory() as session:
            yield session
    except TimeoutError as exc:
        logger.warning("db_pool_timeout", exc_info=exc)
        raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return _get_session_factory()


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _log_pool_timeouts(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "handle_error")
    def receive_error(context):  # noqa: ANN001
        exc = context.original_exception or context.sqlalchemy_exception
        if isinstance(exc, TimeoutError):
            logger.warning(
                "db_pool_timeout",
                extra={"extra": {"operation": str(context.statement) if context.statement else None}},
            )
