"""
Job-related type definitions.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from queuectl.constants import MAX_RETRIES_LIMIT, JobState


class EnqueueRequest(BaseModel):
    """
    Enqueue descriptor: ``{"id"?: str, "command": str, "max_retries"?: int}``.

    ``max_retries`` falls back to the ``default_max_retries`` config value
    when omitted.
    """

    id: str | None = Field(default=None, min_length=1, max_length=255)
    command: str
    max_retries: int | None = Field(default=None, ge=0, le=MAX_RETRIES_LIMIT)

    @field_validator("command")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be empty")
        return value


class ExecutionResult(BaseModel):
    """
    Result of running a job's command.
    Returned by the executor after the process exits (or fails to start).
    """

    success: bool
    exit_code: int | None = None
    output: str | None = None
    error: str | None = None
    duration_ms: float | None = None


class JobRecord(BaseModel):
    """Read-only view of a job row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    command: str
    state: JobState
    attempts: int
    max_retries: int
    worker_id: str | None
    created_at: datetime
    updated_at: datetime
    available_at: datetime
    last_error: str | None


@dataclass
class JobContext:
    """
    Context passed to the executor for one attempt.
    Built from the claimed row.
    """

    job_id: str
    command: str
    attempt: int
    max_retries: int
    worker_id: str


@dataclass(frozen=True)
class QueueConfig:
    """
    Snapshot of the config table taken when a worker starts.
    Later changes only affect workers started afterwards.
    """

    backoff_base: float
    default_max_retries: int
