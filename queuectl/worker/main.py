"""
Worker process for executing jobs.

The worker claims jobs from the queue one at a time, runs their commands,
and records each outcome according to the job lifecycle. Total concurrent
executions are bounded by the number of worker processes.
"""

import asyncio
import logging
import os
import socket
import time

from sqlalchemy.exc import SQLAlchemyError

from queuectl.backoff import next_available_at
from queuectl.config import get_settings
from queuectl.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB, SPAN_PERSIST_OUTCOME, Trigger
from queuectl.db import close_db, get_engine, get_session_context, init_db
from queuectl.db.repository import ConfigRepository, JobRepository
from queuectl.exceptions import InvalidTransitionError
from queuectl.observability.logging import setup_logging, worker_log_context
from queuectl.observability.metrics import get_metrics, setup_metrics
from queuectl.observability.tracing import get_tracer, instrument_sqlalchemy
from queuectl.recovery import RecoveryManager
from queuectl.state_machine import outcome_trigger
from queuectl.types.job import ExecutionResult, JobContext, QueueConfig
from queuectl.utils import utcnow
from queuectl.worker.executor import CommandExecutor, run_command
from queuectl.worker.shutdown import ShutdownController

logger = logging.getLogger(__name__)

# Metric label for each outcome trigger
_OUTCOME_LABELS = {
    Trigger.SUCCEED: "completed",
    Trigger.RETRY: "retried",
    Trigger.BURY: "dead",
}


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Recovery sweep of orphaned jobs before the first claim
    - Atomic claims, so concurrent workers never share a job
    - Exponential backoff retries and a dead-letter queue
    - Graceful shutdown: the running job always finishes first
    """

    def __init__(
        self,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        shutdown: ShutdownController | None = None,
        executor: CommandExecutor = run_command,
    ):
        """
        Initialize the worker.

        Args:
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            poll_interval: Seconds between polls when the queue is empty.
            shutdown: Shutdown controller; a private one is created if omitted.
            executor: Coroutine that runs a job's command.
        """
        settings = get_settings()

        self.worker_id = worker_id or settings.worker_id or f"{socket.gethostname()}-{os.getpid()}"
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        )
        self.storage_retry_limit = settings.worker_storage_retry_limit

        self.queue_config: QueueConfig | None = None
        self._shutdown = shutdown or ShutdownController()
        self._executor = executor
        self._metrics = get_metrics()

    @property
    def shutdown(self) -> ShutdownController:
        return self._shutdown

    async def start(self) -> None:
        """Recover orphaned jobs, then run the loop until shutdown."""
        with worker_log_context(self.worker_id):
            await self.prepare()

            logger.info(
                "Worker started",
                extra={
                    "worker_id": self.worker_id,
                    "backoff_base": self.queue_config.backoff_base,
                    "poll_interval": self.poll_interval,
                },
            )

            while not self._shutdown.requested:
                try:
                    processed = await self.run_once()
                except SQLAlchemyError as e:
                    logger.warning(
                        f"Storage error in worker loop: {e}",
                        extra={"worker_id": self.worker_id},
                    )
                    processed = False
                except Exception as e:
                    logger.exception(
                        f"Error in worker loop: {e}",
                        extra={"worker_id": self.worker_id},
                    )
                    processed = False

                if not processed:
                    await self._shutdown.wait(self.poll_interval)

            logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        self._shutdown.request()

    async def prepare(self) -> QueueConfig:
        """
        Take the config snapshot and run the recovery sweep.

        Returns:
            The config this worker holds for its lifetime.
        """
        async with get_session_context() as session:
            self.queue_config = await ConfigRepository(session).load_queue_config()

        await RecoveryManager().run_once()
        return self.queue_config

    async def run_once(self) -> bool:
        """
        Claim one job and process it.

        Returns:
            True if a job was claimed and its outcome handled.
        """
        if self.queue_config is None:
            await self.prepare()

        job = await self._claim()
        if job is None:
            return False

        context = JobContext(
            job_id=job.id,
            command=job.command,
            attempt=job.attempts,
            max_retries=job.max_retries,
            worker_id=self.worker_id,
        )

        result = await self._execute(context)
        await self._persist_outcome(context, result)
        return True

    async def _claim(self):
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", self.worker_id)

            async with get_session_context() as session:
                repo = JobRepository(session)
                job = await repo.claim_next(self.worker_id)
                await session.commit()

            if job is not None:
                span.set_attribute("job_id", job.id)
                self._metrics.record_job_claimed(self.worker_id)

        return job

    async def _execute(self, context: JobContext) -> ExecutionResult:
        """
        Run the job's command.

        Anything the executor raises becomes a failed attempt rather than a
        worker crash.
        """
        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job_id", context.job_id)
            span.set_attribute("attempt", context.attempt)

            start_time = time.monotonic()
            try:
                result = await self._executor(context)
            except Exception as e:
                logger.exception(
                    "Executor raised exception",
                    extra={"job_id": context.job_id, "error": str(e)},
                )
                result = ExecutionResult(
                    success=False,
                    error=f"executor exception: {e}",
                    duration_ms=(time.monotonic() - start_time) * 1000,
                )

            span.set_attribute("success", result.success)

        return result

    async def _persist_outcome(self, context: JobContext, result: ExecutionResult) -> None:
        """
        Record the attempt's outcome, retrying on storage errors.

        If storage stays unavailable the job is left PROCESSING and the
        next worker's recovery sweep returns it to the queue.
        """
        trigger = outcome_trigger(result.success, context.attempt, context.max_retries)
        error = result.error or "unknown error"
        duration = (result.duration_ms or 0.0) / 1000

        for attempt in range(1, self.storage_retry_limit + 1):
            try:
                with get_tracer().start_as_current_span(SPAN_PERSIST_OUTCOME) as span:
                    span.set_attribute("job_id", context.job_id)
                    span.set_attribute("trigger", trigger.value)

                    async with get_session_context() as session:
                        repo = JobRepository(session)
                        now = utcnow()

                        if trigger == Trigger.SUCCEED:
                            job = await repo.complete_job(context.job_id, self.worker_id, now=now)
                        elif trigger == Trigger.RETRY:
                            available_at = next_available_at(
                                now, self.queue_config.backoff_base, context.attempt
                            )
                            job = await repo.retry_job(
                                context.job_id,
                                self.worker_id,
                                error=error,
                                available_at=available_at,
                                now=now,
                            )
                        else:
                            job = await repo.bury_job(
                                context.job_id, self.worker_id, error=error, now=now
                            )

                        await session.commit()

            except InvalidTransitionError as e:
                logger.warning(
                    f"Job was moved by another actor: {e}",
                    extra={"job_id": context.job_id, "worker_id": self.worker_id},
                )
                return
            except SQLAlchemyError as e:
                logger.warning(
                    f"Storage error recording outcome: {e}",
                    extra={"job_id": context.job_id, "attempt": attempt},
                )
                await asyncio.sleep(self.poll_interval)
                continue
            except Exception:
                logger.exception(
                    "Unexpected error recording job outcome, leaving it for recovery",
                    extra={"job_id": context.job_id, "trigger": trigger.value},
                )
                return

            if job is not None:
                self._metrics.record_job_finished(_OUTCOME_LABELS[trigger], duration)
                if trigger != Trigger.SUCCEED:
                    logger.warning(
                        "Job failed",
                        extra={
                            "job_id": context.job_id,
                            "error": error,
                            "attempt": context.attempt,
                            "state": job.state.value,
                        },
                    )
            return

        logger.error(
            "Giving up recording job outcome, leaving it for recovery",
            extra={"job_id": context.job_id, "trigger": trigger.value},
        )


async def run_async() -> None:
    """Run the worker asynchronously."""
    settings = get_settings()
    setup_logging()
    setup_metrics(settings.metrics_port)
    await init_db()
    instrument_sqlalchemy(get_engine().sync_engine)

    shutdown = ShutdownController()
    shutdown.install(asyncio.get_running_loop())

    worker = Worker(shutdown=shutdown)

    try:
        await worker.start()
    finally:
        shutdown.uninstall()
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
