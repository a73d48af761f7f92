"""
queuectl

A persistent, crash-tolerant job queue: durable job records, an atomic
claim protocol shared by independent worker processes, retries with
exponential backoff and a dead-letter queue.
"""

__version__ = "1.0.0"
