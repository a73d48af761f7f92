"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Stored job lifecycle states.

    A retry is not a state of its own: it is PENDING reached through a
    failed attempt, with ``available_at`` pushed into the future.
    See ``queuectl.state_machine`` for the legal transitions.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DEAD = "dead"


class Trigger(StrEnum):
    """Events that move a job from one state to another."""

    CLAIM = "claim"
    SUCCEED = "succeed"
    RETRY = "retry"
    BURY = "bury"
    REQUEUE = "requeue"
    RECOVER = "recover"


# Config table keys
CONFIG_BACKOFF_BASE = "backoff_base"
CONFIG_DEFAULT_MAX_RETRIES = "default_max_retries"

# Default values
DEFAULT_BACKOFF_BASE = 2.0
DEFAULT_MAX_RETRIES = 3

# Longest delay a retry can be deferred by, in seconds (one week)
MAX_BACKOFF_SECONDS = 7 * 24 * 3600

# Largest retry budget a job or the config table accepts (32-bit INTEGER column)
MAX_RETRIES_LIMIT = 2**31 - 1

# Metrics names
METRIC_QUEUE_DEPTH = "queuectl_queue_depth"
METRIC_JOBS_ENQUEUED = "queuectl_jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "queuectl_jobs_claimed_total"
METRIC_JOBS_FINISHED = "queuectl_jobs_finished_total"
METRIC_JOB_DURATION = "queuectl_job_duration_seconds"
METRIC_JOBS_RECOVERED = "queuectl_jobs_recovered_total"
METRIC_JOBS_REQUEUED = "queuectl_jobs_requeued_total"

# Trace span names
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_PERSIST_OUTCOME = "persist_outcome"
SPAN_RECOVER_JOBS = "recover_jobs"
