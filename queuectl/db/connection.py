"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from queuectl.config import get_settings
from queuectl.db.models import Base

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _configure_sqlite(engine: AsyncEngine, busy_timeout_seconds: float) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    The driver's implicit BEGIN is disabled and replaced with
    BEGIN IMMEDIATE, so a select followed by an update in one transaction
    cannot interleave with another process' writes.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_seconds * 1000)}")
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for_url(database_url: str) -> AsyncEngine:
    """
    Create an async engine configured for the given database URL.

    Args:
        database_url: SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///queuectl.db``.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    settings = get_settings()
    backend = make_url(database_url).get_backend_name()

    if backend == "sqlite":
        engine = create_async_engine(
            database_url,
            echo=settings.log_level == "DEBUG",
            connect_args={"timeout": settings.database_busy_timeout_seconds},
        )
        _configure_sqlite(engine, settings.database_busy_timeout_seconds)
        return engine

    return create_async_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.log_level == "DEBUG",
        pool_pre_ping=True,
    )


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        _engine = create_engine_for_url(get_settings().database_url)
    return _engine


async def init_db(database_url: str | None = None) -> None:
    """
    Initialize the database connection, schema and session factory.

    Creates missing tables and seeds config defaults. Should be called on
    startup by every process that touches the queue.

    Args:
        database_url: Optional URL overriding the configured one.
    """
    global _engine, AsyncSessionLocal
    from queuectl.db.repository import ConfigRepository

    if database_url is not None and _engine is None:
        _engine = create_engine_for_url(database_url)
    engine = get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with get_session_context() as session:
        await ConfigRepository(session).ensure_defaults()

    logger.info(
        "Database connection initialized",
        extra={"database_url": engine.url.render_as_string(hide_password=True)},
    )


async def close_db() -> None:
    """
    Close the database connection.
    Should be called on shutdown.
    """
    global _engine, AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        AsyncSessionLocal = None
        logger.info("Database connection closed")


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession]:
    """
    Context manager for getting async database sessions.

    Commits when the block exits cleanly, rolls back and re-raises
    otherwise.

    Yields:
        AsyncSession: An async database session.

    Raises:
        RuntimeError: If the database is not initialized.
    """
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
