"""
Repositories for database operations.
Implements the data access patterns for jobs and queue configuration.
"""

import logging
import math
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.config import get_settings
from queuectl.constants import (
    CONFIG_BACKOFF_BASE,
    CONFIG_DEFAULT_MAX_RETRIES,
    MAX_RETRIES_LIMIT,
    JobState,
    Trigger,
)
from queuectl.db.models import ConfigEntry, Job
from queuectl.exceptions import DuplicateJobError, InvalidConfigError
from queuectl.state_machine import ensure_transition, get_transition
from queuectl.types.job import QueueConfig
from queuectl.utils import generate_job_id, utcnow

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job creation
    - Claiming the oldest eligible job
    - State transitions as conditional single-row updates
    - Crash recovery of PROCESSING jobs
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        command: str,
        job_id: str | None = None,
        max_retries: int = 3,
        now: datetime | None = None,
    ) -> Job:
        """
        Insert a new PENDING job.

        Args:
            command: Shell command to run.
            job_id: Optional identifier; generated when omitted.
            max_retries: Retry budget fixed for the job's lifetime.
            now: Creation time, defaults to the current time.

        Returns:
            The created Job.

        Raises:
            DuplicateJobError: If a job with ``job_id`` already exists.
        """
        now = now or utcnow()
        job_id = job_id or generate_job_id()

        if await self.get_job(job_id) is not None:
            raise DuplicateJobError(job_id)

        job = Job(
            id=job_id,
            command=command,
            state=JobState.PENDING,
            attempts=0,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
            available_at=now,
        )
        self._session.add(job)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateJobError(job_id) from e

        logger.info(
            "Created new job",
            extra={"job_id": job_id, "max_retries": max_retries},
        )
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job identifier.

        Returns:
            The Job or None if not found.
        """
        return await self._session.get(Job, job_id, populate_existing=True)

    async def list_jobs(
        self,
        state: JobState | None = None,
        limit: int | None = None,
    ) -> Sequence[Job]:
        """
        List jobs, oldest first.

        Args:
            state: Optional state filter.
            limit: Maximum number of jobs to return.

        Returns:
            The matching jobs.
        """
        stmt = select(Job).order_by(Job.created_at, Job.id)
        if state is not None:
            stmt = stmt.where(Job.state == state)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_dead_jobs(self) -> Sequence[Job]:
        """List the dead-letter queue in the order jobs died."""
        stmt = (
            select(Job)
            .where(Job.state == JobState.DEAD)
            .order_by(Job.updated_at, Job.id)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_jobs(self, state: JobState | None = None) -> int:
        """Count jobs, optionally in a single state."""
        stmt = select(func.count()).select_from(Job)
        if state is not None:
            stmt = stmt.where(Job.state == state)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get job counts by state.

        Returns:
            Dictionary of state -> count, with every state present.
        """
        stmt = select(Job.state, func.count()).group_by(Job.state)
        result = await self._session.execute(stmt)

        stats = {state.value: 0 for state in JobState}
        for state, count in result.all():
            stats[JobState(state).value] = count
        return stats

    async def claim_next(
        self,
        worker_id: str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Claim the oldest eligible job for ``worker_id``.

        Selection and the conditional update run in the caller's
        transaction. On SQLite that transaction already holds the write lock
        (BEGIN IMMEDIATE); on PostgreSQL the row is locked with
        FOR UPDATE SKIP LOCKED. The update re-checks ``state = pending`` so
        a job another actor claimed first is reported as "nothing claimed".

        Args:
            worker_id: The claiming worker.
            now: Eligibility cut-off, defaults to the current time.

        Returns:
            The claimed job, now PROCESSING, or None.
        """
        now = now or utcnow()
        transition = get_transition(Trigger.CLAIM)

        candidate = (
            select(Job.id)
            .where(
                and_(
                    Job.state == transition.source,
                    Job.available_at <= now,
                )
            )
            .order_by(Job.created_at, Job.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(candidate)
        job_id = result.scalar_one_or_none()
        if job_id is None:
            return None

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.state == transition.source,
                )
            )
            .values(
                state=transition.target,
                attempts=Job.attempts + 1,
                worker_id=worker_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            logger.debug(
                "Lost claim race",
                extra={"job_id": job_id, "worker_id": worker_id},
            )
            return None

        job = await self.get_job(job_id)
        logger.info(
            "Claimed job",
            extra={"job_id": job_id, "worker_id": worker_id, "attempt": job.attempts},
        )
        return job

    async def complete_job(
        self,
        job_id: str,
        worker_id: str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Mark a PROCESSING job as completed.

        Args:
            job_id: The job identifier.
            worker_id: The worker that claimed the job.
            now: Completion time.

        Returns:
            Updated Job or None if the worker no longer owns it.
        """
        now = now or utcnow()
        job = await self._transition(
            job_id,
            Trigger.SUCCEED,
            {"available_at": now, "last_error": None, "updated_at": now},
            worker_id=worker_id,
        )

        if job:
            logger.info("Job completed successfully", extra={"job_id": job_id})

        return job

    async def retry_job(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        available_at: datetime,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Return a failed PROCESSING job to PENDING with a deferred start.

        Args:
            job_id: The job identifier.
            worker_id: The worker that claimed the job.
            error: Failure detail.
            available_at: When the job becomes eligible again.
            now: Failure time.

        Returns:
            Updated Job or None if the worker no longer owns it.
        """
        now = now or utcnow()
        job = await self._transition(
            job_id,
            Trigger.RETRY,
            {"available_at": available_at, "last_error": error, "updated_at": now},
            worker_id=worker_id,
        )

        if job:
            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": job_id,
                    "attempt": job.attempts,
                    "available_at": available_at.isoformat(),
                },
            )

        return job

    async def bury_job(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Move a failed PROCESSING job to the dead-letter queue.

        Args:
            job_id: The job identifier.
            worker_id: The worker that claimed the job.
            error: Failure detail.
            now: Failure time.

        Returns:
            Updated Job or None if the worker no longer owns it.
        """
        now = now or utcnow()
        job = await self._transition(
            job_id,
            Trigger.BURY,
            {"available_at": now, "last_error": error, "updated_at": now},
            worker_id=worker_id,
        )

        if job:
            logger.warning(
                f"Job moved to DLQ after {job.attempts} attempts",
                extra={"job_id": job_id, "error": error},
            )

        return job

    async def requeue_dead_job(
        self,
        job_id: str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Move a DEAD job back to PENDING with its attempts reset.

        Args:
            job_id: The job identifier.
            now: Requeue time; the job is eligible from then on.

        Returns:
            Updated Job or None if not found.

        Raises:
            InvalidTransitionError: If the job exists but is not DEAD.
        """
        now = now or utcnow()
        job = await self._transition(
            job_id,
            Trigger.REQUEUE,
            {"attempts": 0, "available_at": now, "updated_at": now},
        )

        if job:
            logger.info("Job requeued from DLQ", extra={"job_id": job_id})

        return job

    async def recover_processing_jobs(self, now: datetime | None = None) -> int:
        """
        Return every PROCESSING job to PENDING, immediately eligible.

        Called once at worker startup. A job found PROCESSING is assumed to
        belong to a worker that died mid-execution.

        Returns:
            Number of recovered jobs.
        """
        now = now or utcnow()
        transition = get_transition(Trigger.RECOVER)

        result = await self._session.execute(
            select(Job.id, Job.worker_id).where(Job.state == transition.source)
        )
        orphans = result.all()
        if not orphans:
            return 0

        stmt = (
            update(Job)
            .where(Job.state == transition.source)
            .values(
                state=transition.target,
                available_at=now,
                worker_id=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        for row in orphans:
            logger.warning(
                "Recovered orphaned job",
                extra={"job_id": row.id, "previous_worker_id": row.worker_id},
            )

        return count

    async def _transition(
        self,
        job_id: str,
        trigger: Trigger,
        values: dict[str, Any],
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Apply ``trigger`` as a conditional single-row update.

        The update only matches while the job is still in the trigger's
        source state (and owned by ``worker_id`` when given), so a stale
        caller never overwrites another actor's transition.

        Returns:
            The updated Job, or None if the job does not exist or is owned
            by another worker.

        Raises:
            InvalidTransitionError: If the job is in a state the trigger
                does not start from.
        """
        transition = get_transition(trigger)
        filters = [Job.id == job_id, Job.state == transition.source]
        if worker_id is not None:
            filters.append(Job.worker_id == worker_id)

        stmt = (
            update(Job)
            .where(and_(*filters))
            .values(state=transition.target, worker_id=None, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount == 0:
            current = await self.get_job(job_id)
            if current is None:
                return None
            ensure_transition(trigger, current.state)
            logger.warning(
                "Worker doesn't own job",
                extra={
                    "job_id": job_id,
                    "worker_id": worker_id,
                    "owner": current.worker_id,
                },
            )
            return None

        return await self.get_job(job_id)


class ConfigRepository:
    """
    Repository for the operator-settable ``config`` table.

    ``backoff_base`` must be a positive number and ``default_max_retries`` a
    non-negative integer; other keys are stored as given.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key: str) -> str | None:
        """Get a config value, or None if unset."""
        entry = await self._session.get(ConfigEntry, key, populate_existing=True)
        return entry.value if entry else None

    async def get_all(self) -> dict[str, str]:
        """Get every config pair, sorted by key."""
        result = await self._session.execute(
            select(ConfigEntry).order_by(ConfigEntry.key)
        )
        return {entry.key: entry.value for entry in result.scalars().all()}

    async def set(self, key: str, value: str) -> str:
        """
        Validate and store a config value.

        Args:
            key: Config key.
            value: Raw value.

        Returns:
            The normalized value that was stored.

        Raises:
            InvalidConfigError: If a known key gets an invalid value.
        """
        normalized = validate_config_value(key, value)
        await self._session.merge(ConfigEntry(key=key, value=normalized))
        logger.info("Config updated", extra={"key": key, "value": normalized})
        return normalized

    async def ensure_defaults(self) -> None:
        """Seed the known keys without overwriting operator values."""
        settings = get_settings()
        defaults = {
            CONFIG_BACKOFF_BASE: str(settings.default_backoff_base),
            CONFIG_DEFAULT_MAX_RETRIES: str(settings.default_max_retries),
        }
        for key, value in defaults.items():
            if await self.get(key) is None:
                self._session.add(ConfigEntry(key=key, value=value))
        await self._session.flush()

    async def load_queue_config(self) -> QueueConfig:
        """
        Read the values a worker holds for its lifetime.

        Raises:
            InvalidConfigError: If a stored value is invalid.
        """
        settings = get_settings()
        backoff_base = await self.get(CONFIG_BACKOFF_BASE)
        max_retries = await self.get(CONFIG_DEFAULT_MAX_RETRIES)

        return QueueConfig(
            backoff_base=float(
                validate_config_value(CONFIG_BACKOFF_BASE, backoff_base)
                if backoff_base is not None
                else settings.default_backoff_base
            ),
            default_max_retries=int(
                validate_config_value(CONFIG_DEFAULT_MAX_RETRIES, max_retries)
                if max_retries is not None
                else settings.default_max_retries
            ),
        )


def validate_config_value(key: str, value: str) -> str:
    """
    Validate a config value for ``key`` and return its normalized form.

    Raises:
        InvalidConfigError: If the value is invalid for a known key.
    """
    value = str(value).strip()

    if key == CONFIG_BACKOFF_BASE:
        try:
            number = float(value)
        except ValueError:
            raise InvalidConfigError(f"{key} must be a number, got {value!r}") from None
        if not math.isfinite(number) or number <= 0:
            raise InvalidConfigError(f"{key} must be a positive number, got {value!r}")
        return value

    if key == CONFIG_DEFAULT_MAX_RETRIES:
        try:
            number = int(value)
        except ValueError:
            raise InvalidConfigError(f"{key} must be an integer, got {value!r}") from None
        if number < 0:
            raise InvalidConfigError(f"{key} must be non-negative, got {value!r}")
        if number > MAX_RETRIES_LIMIT:
            raise InvalidConfigError(f"{key} must be at most {MAX_RETRIES_LIMIT}, got {value!r}")
        return str(number)

    if not key:
        raise InvalidConfigError("config key must not be empty")
    return value
