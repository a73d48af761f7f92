"""
Small helpers shared across the package.
"""

from datetime import datetime, timezone
from uuid import uuid4


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime.

    Every timestamp the queue stores is naive UTC so SQLite compares them
    consistently.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_job_id() -> str:
    """Generate a fresh job identifier."""
    return uuid4().hex
