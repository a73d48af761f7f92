"""
Command executor.

Runs a job's command through the platform shell and reports how it ended.
Both "exited non-zero" and "could not be started" come back as a failed
ExecutionResult; the worker treats them the same way.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from queuectl.config import get_settings
from queuectl.types.job import ExecutionResult, JobContext

logger = logging.getLogger(__name__)

# Type alias for executor functions
CommandExecutor = Callable[[JobContext], Awaitable[ExecutionResult]]


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[-limit:]


async def run_command(context: JobContext) -> ExecutionResult:
    """
    Run the job's command and wait for it to exit.

    There is no timeout: a command that never exits blocks the worker.

    Args:
        context: The job context.

    Returns:
        ExecutionResult describing the attempt.
    """
    limit = get_settings().executor_output_limit
    start_time = time.monotonic()

    logger.info(
        "Running command",
        extra={
            "job_id": context.job_id,
            "attempt": context.attempt,
            "command": context.command,
        },
    )

    try:
        process = await asyncio.create_subprocess_shell(
            context.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as e:
        logger.warning(
            "Command could not be started",
            extra={"job_id": context.job_id, "error": str(e)},
        )
        return ExecutionResult(
            success=False,
            error=f"failed to start: {e}",
            duration_ms=(time.monotonic() - start_time) * 1000,
        )

    duration_ms = (time.monotonic() - start_time) * 1000
    output = _truncate(stdout.decode(errors="replace"), limit)
    error_output = _truncate(stderr.decode(errors="replace").strip(), limit)
    exit_code = process.returncode

    if output:
        logger.info("Command output", extra={"job_id": context.job_id, "output": output})

    if exit_code == 0:
        return ExecutionResult(
            success=True,
            exit_code=exit_code,
            output=output,
            duration_ms=duration_ms,
        )

    error = f"exit_code={exit_code}"
    if error_output:
        error = f"{error}: {error_output}"

    return ExecutionResult(
        success=False,
        exit_code=exit_code,
        output=output,
        error=error,
        duration_ms=duration_ms,
    )
