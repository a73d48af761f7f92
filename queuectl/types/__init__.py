"""
Type definitions for the job queue.
"""

from queuectl.types.job import (
    EnqueueRequest,
    ExecutionResult,
    JobContext,
    JobRecord,
    QueueConfig,
)

__all__ = [
    "EnqueueRequest",
    "ExecutionResult",
    "JobContext",
    "JobRecord",
    "QueueConfig",
]
