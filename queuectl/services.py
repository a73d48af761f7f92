"""
Queue operations used by the command line.

Each function takes a session, does its work through the repositories and
commits. Errors a user can cause are raised as ``QueueError`` subclasses.
"""

from collections.abc import Sequence

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import JobState
from queuectl.db.models import Job
from queuectl.db.repository import ConfigRepository, JobRepository
from queuectl.exceptions import InvalidJobError, InvalidTransitionError, JobNotFoundError
from queuectl.observability.metrics import get_metrics
from queuectl.types.job import EnqueueRequest


def parse_enqueue_payload(raw: str) -> EnqueueRequest:
    """
    Parse and validate a JSON enqueue descriptor.

    Args:
        raw: JSON text such as ``{"id": "job1", "command": "echo hi"}``.

    Returns:
        The validated request.

    Raises:
        InvalidJobError: If the text is not valid JSON or fails validation.
    """
    try:
        return EnqueueRequest.model_validate_json(raw)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidJobError(f"Invalid job descriptor: {details}") from e


async def enqueue_job(session: AsyncSession, request: EnqueueRequest) -> Job:
    """
    Create a job from a validated request.

    ``max_retries`` defaults to the ``default_max_retries`` config value.

    Raises:
        DuplicateJobError: If the requested id is taken.
    """
    max_retries = request.max_retries
    if max_retries is None:
        config = await ConfigRepository(session).load_queue_config()
        max_retries = config.default_max_retries

    job = await JobRepository(session).create_job(
        command=request.command,
        job_id=request.id,
        max_retries=max_retries,
    )
    await session.commit()

    get_metrics().record_job_enqueued()
    return job


async def requeue_dead_job(session: AsyncSession, job_id: str) -> Job:
    """
    Move a job from the DLQ back to the queue.

    Raises:
        JobNotFoundError: If the job does not exist or is not dead.
    """
    repo = JobRepository(session)
    not_found = JobNotFoundError(job_id, f"Job {job_id} not found in DLQ")

    try:
        job = await repo.requeue_dead_job(job_id)
    except InvalidTransitionError:
        raise not_found from None

    if job is None:
        raise not_found

    await session.commit()
    get_metrics().record_job_requeued()
    return job


async def list_jobs(
    session: AsyncSession,
    state: JobState | None = None,
    limit: int | None = None,
) -> Sequence[Job]:
    """List jobs, oldest first."""
    return await JobRepository(session).list_jobs(state=state, limit=limit)


async def list_dead_jobs(session: AsyncSession) -> Sequence[Job]:
    """List the dead-letter queue."""
    return await JobRepository(session).list_dead_jobs()


async def get_status(session: AsyncSession) -> dict[str, int]:
    """Get job counts for every state."""
    stats = await JobRepository(session).get_job_stats()
    get_metrics().update_queue_depth(stats)
    return stats


async def get_config(session: AsyncSession, key: str | None = None) -> dict[str, str]:
    """
    Read config values.

    Returns:
        ``{key: value}`` for one key (empty if unset), or every pair.
    """
    repo = ConfigRepository(session)
    if key is None:
        return await repo.get_all()

    value = await repo.get(key)
    return {} if value is None else {key: value}


async def set_config(session: AsyncSession, key: str, value: str) -> str:
    """
    Validate and store a config value.

    Raises:
        InvalidConfigError: If a known key gets an invalid value.
    """
    normalized = await ConfigRepository(session).set(key, value)
    await session.commit()

    return normalized
