"""
Retry backoff policy.

``delay = backoff_base ** attempts`` where ``attempts`` is the value
recorded by the claim that just failed, so the first retry waits
``backoff_base ** 1`` seconds. Delays are capped at
``MAX_BACKOFF_SECONDS`` so a job with a large retry budget always gets a
representable next start time.
"""

from datetime import datetime, timedelta

from queuectl.constants import MAX_BACKOFF_SECONDS


def compute_backoff_seconds(backoff_base: float, attempts: int) -> float:
    """
    Compute the retry delay for a failed attempt.

    Bases at or below 1 are accepted and give a flat or shrinking delay.

    Args:
        backoff_base: Positive base read from the config table.
        attempts: Post-claim attempt count of the failed job.

    Returns:
        Delay in seconds, at most ``MAX_BACKOFF_SECONDS``.
    """
    if attempts < 0:
        raise ValueError("attempts must be non-negative")
    try:
        delay = float(backoff_base) ** attempts
    except OverflowError:
        return float(MAX_BACKOFF_SECONDS)
    return min(delay, float(MAX_BACKOFF_SECONDS))


def next_available_at(now: datetime, backoff_base: float, attempts: int) -> datetime:
    """Return the time a job failed at ``now`` becomes eligible again."""
    delay = timedelta(seconds=compute_backoff_seconds(backoff_base, attempts))
    if now > datetime.max - delay:
        return datetime.max
    return now + delay
