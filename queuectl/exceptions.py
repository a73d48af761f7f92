"""
Errors raised by the queue.

Repositories report lost races by returning ``None``; these exceptions are
for conditions a caller has to act on.
"""


class QueueError(Exception):
    """Base class for all queue errors."""


class InvalidJobError(QueueError):
    """The enqueue descriptor is malformed. Nothing was written."""


class DuplicateJobError(QueueError):
    """A job with the requested id already exists."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} already exists")
        self.job_id = job_id


class JobNotFoundError(QueueError):
    """The job does not exist, or is not in the state the operation needs."""

    def __init__(self, job_id: str, detail: str | None = None):
        super().__init__(detail or f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(QueueError):
    """A trigger was applied to a job whose state does not allow it."""

    def __init__(self, trigger: str, current: str):
        super().__init__(f"Cannot apply '{trigger}' to a job in state '{current}'")
        self.trigger = trigger
        self.current = current


class InvalidConfigError(QueueError):
    """A config value failed validation."""
