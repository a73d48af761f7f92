"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator, Generator
from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.config import get_settings
from queuectl.db import close_db, get_session_context, init_db
from queuectl.db.models import Job
from queuectl.db.repository import ConfigRepository, JobRepository


@pytest.fixture
def database_url(tmp_path, monkeypatch) -> Generator[str]:
    """Point the application at a fresh SQLite file for each test."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'queuectl-test.db'}"

    monkeypatch.setenv("QUEUECTL_DATABASE_URL", url)
    monkeypatch.setenv("QUEUECTL_DATABASE_BUSY_TIMEOUT_SECONDS", "10")
    monkeypatch.setenv("QUEUECTL_WORKER_PIDFILE", str(tmp_path / "workers.pid"))
    monkeypatch.setenv("QUEUECTL_WORKER_POLL_INTERVAL_SECONDS", "0.05")
    monkeypatch.setenv("QUEUECTL_WORKER_STOP_GRACE_SECONDS", "0")
    monkeypatch.setenv("QUEUECTL_LOG_LEVEL", "WARNING")
    get_settings.cache_clear()

    yield url

    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db(database_url: str) -> AsyncGenerator[None]:
    """Initialize the schema and global session factory."""
    await init_db()
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(db) -> AsyncGenerator[AsyncSession]:
    """
    Create a database session for tests.

    SQLite transactions hold the write lock until commit, so tests commit
    after each step before anything else touches the database.
    """
    async with get_session_context() as session:
        yield session


@pytest_asyncio.fixture
async def repo(db_session: AsyncSession) -> JobRepository:
    """Create a job repository instance."""
    return JobRepository(db_session)


@pytest_asyncio.fixture
async def config_repo(db_session: AsyncSession) -> ConfigRepository:
    """Create a config repository instance."""
    return ConfigRepository(db_session)


@pytest.fixture
def fetch_job(db):
    """Read a job in its own short transaction."""

    async def _fetch(job_id: str) -> Job | None:
        async with get_session_context() as session:
            return await JobRepository(session).get_job(job_id)

    return _fetch


@pytest.fixture
def make_job(db):
    """Create a job in its own short transaction."""

    async def _make(
        command: str = "exit 0",
        job_id: str | None = None,
        max_retries: int = 3,
        now: datetime | None = None,
    ) -> Job:
        async with get_session_context() as session:
            return await JobRepository(session).create_job(
                command=command,
                job_id=job_id,
                max_retries=max_retries,
                now=now,
            )

    return _make


@pytest.fixture
def put_config(db):
    """Write a config value in its own short transaction."""

    async def _put(key: str, value: str) -> None:
        async with get_session_context() as session:
            await ConfigRepository(session).set(key, value)

    return _put
