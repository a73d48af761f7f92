"""
Startup recovery for jobs orphaned by a crashed worker.

A job can only be sitting in PROCESSING when a worker starts if the
worker that claimed it died before recording an outcome. The recovery
sweep runs once, before the worker's loop, and makes every such job
immediately eligible again.

Known hazard: when several workers start at nearly the same time, one
worker's sweep can take back a job another worker has just claimed and is
still running, so that job may run twice. Claimed rows carry ``worker_id``
and every recovered job is logged with its previous owner, which makes
such duplicates visible.
"""

import logging

from queuectl.constants import SPAN_RECOVER_JOBS
from queuectl.db import get_session_context
from queuectl.db.repository import JobRepository
from queuectl.observability.metrics import get_metrics
from queuectl.observability.tracing import get_tracer

logger = logging.getLogger(__name__)


class RecoveryManager:
    """
    Returns orphaned PROCESSING jobs to PENDING.

    No backoff is applied: the job did not fail, its worker did.
    """

    def __init__(self) -> None:
        self._metrics = get_metrics()

    async def run_once(self) -> int:
        """
        Run the recovery sweep.

        Returns:
            Number of jobs recovered.
        """
        with get_tracer().start_as_current_span(SPAN_RECOVER_JOBS) as span:
            async with get_session_context() as session:
                repo = JobRepository(session)
                count = await repo.recover_processing_jobs()
                await session.commit()

            span.set_attribute("recovered", count)

        if count > 0:
            self._metrics.record_jobs_recovered(count)
            logger.warning(f"Recovered {count} orphaned jobs")
        else:
            logger.info("No orphaned jobs to recover")

        return count

