"""
Prometheus metrics collection.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from queuectl.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_RECOVERED,
    METRIC_JOBS_REQUEUED,
    METRIC_QUEUE_DEPTH,
)

logger = logging.getLogger(__name__)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth by state
    - Enqueues, claims and requeues
    - Attempt outcomes and execution duration
    - Crash recovery
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs in each state",
            ["state"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed",
            ["worker_id"],
            registry=self._registry,
        )

        # outcome is one of completed, retried, dead
        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of finished attempts",
            ["outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Command execution duration in seconds",
            ["outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 600.0),
            registry=self._registry,
        )

        self.jobs_recovered = Counter(
            METRIC_JOBS_RECOVERED,
            "Total number of orphaned jobs returned to pending",
            registry=self._registry,
        )

        self.jobs_requeued = Counter(
            METRIC_JOBS_REQUEUED,
            "Total number of jobs requeued from the DLQ",
            registry=self._registry,
        )

    def record_job_enqueued(self) -> None:
        """Record a job submission."""
        self.jobs_enqueued.inc()

    def record_job_claimed(self, worker_id: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(worker_id=worker_id).inc()

    def record_job_finished(self, outcome: str, duration_seconds: float) -> None:
        """Record the outcome of an attempt."""
        self.jobs_finished.labels(outcome=outcome).inc()
        self.job_duration.labels(outcome=outcome).observe(duration_seconds)

    def record_jobs_recovered(self, count: int) -> None:
        """Record jobs swept back to pending at startup."""
        self.jobs_recovered.inc(count)

    def record_job_requeued(self) -> None:
        """Record a DLQ requeue."""
        self.jobs_requeued.inc()

    def update_queue_depth(self, stats: dict[str, int]) -> None:
        """Update queue depth from a state -> count mapping."""
        for state, count in stats.items():
            self.queue_depth.labels(state=state).set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics(port: int = 0) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: When positive, also serve the metrics over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port > 0:
        try:
            start_http_server(port)
            logger.info("Serving metrics", extra={"port": port})
        except OSError as e:
            logger.warning(
                "Could not start metrics server",
                extra={"port": port, "error": str(e)},
            )
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
