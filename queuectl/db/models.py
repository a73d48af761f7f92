"""
SQLAlchemy database models.
Defines the jobs and config tables.
"""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from queuectl.constants import DEFAULT_MAX_RETRIES, JobState
from queuectl.utils import generate_job_id


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state. Rows are only
    mutated through ``JobRepository``; each mutation is a conditional update
    guarded by the state it expects to find.

    Key constraints:
    - ``id`` is unique
    - ``attempts`` counts claims and only goes back to 0 on a DLQ requeue
    - ``worker_id`` names the worker holding a PROCESSING job
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        default=generate_job_id,
    )

    command: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    state: Mapped[JobState] = mapped_column(
        Enum(
            JobState,
            name="job_state",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobState.PENDING,
        index=True,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_RETRIES,
    )

    # Ownership while PROCESSING
    worker_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Timestamps (naive UTC)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    available_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_jobs_attempts_non_negative"),
        CheckConstraint("max_retries >= 0", name="ck_jobs_max_retries_non_negative"),
        # Index for the claim query: eligible jobs, oldest first
        Index("ix_jobs_claim", "state", "available_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, state={self.state}, "
            f"attempts={self.attempts}/{self.max_retries})"
        )


class ConfigEntry(Base):
    """Operator-settable string key/value pair."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"ConfigEntry({self.key}={self.value!r})"
