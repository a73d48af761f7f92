"""
Unit tests for the shell command executor.
"""

import sys

import pytest

from queuectl.types.job import JobContext
from queuectl.worker.executor import run_command

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")


def make_context(command: str) -> JobContext:
    return JobContext(
        job_id="job-1",
        command=command,
        attempt=1,
        max_retries=3,
        worker_id="test-worker",
    )


class TestRunCommand:
    """Tests for run_command."""

    async def test_exit_zero_is_success(self):
        result = await run_command(make_context("exit 0"))

        assert result.success is True
        assert result.exit_code == 0
        assert result.error is None
        assert result.duration_ms >= 0

    async def test_nonzero_exit_is_failure(self):
        result = await run_command(make_context("exit 3"))

        assert result.success is False
        assert result.exit_code == 3
        assert result.error.startswith("exit_code=3")

    async def test_captures_stdout(self):
        result = await run_command(make_context("echo hello"))

        assert result.success is True
        assert result.output.strip() == "hello"

    async def test_stderr_included_in_error(self):
        result = await run_command(make_context("echo boom >&2; exit 1"))

        assert result.success is False
        assert "boom" in result.error

    async def test_unknown_command_is_failure(self):
        result = await run_command(make_context("definitely-not-a-real-command-xyz"))

        assert result.success is False
        assert result.exit_code != 0

    async def test_output_truncated(self, monkeypatch):
        from queuectl.config import get_settings

        monkeypatch.setenv("QUEUECTL_EXECUTOR_OUTPUT_LIMIT", "10")
        get_settings.cache_clear()
        try:
            result = await run_command(make_context("printf '%050d' 0"))
        finally:
            get_settings.cache_clear()

        assert len(result.output) == 10

