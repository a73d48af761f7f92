"""
Unit tests for the command line.

Each invocation opens and closes its own database connection, so these
tests only need the environment from the ``database_url`` fixture.
"""

import json
import os
import signal
import subprocess
import sys

import pytest
from click.testing import CliRunner

from queuectl.cli.main import cli
from queuectl.cli.registry import WorkerRegistry
from queuectl.config import get_settings


@pytest.fixture
def runner(database_url) -> CliRunner:
    return CliRunner()


def list_jobs(runner: CliRunner, *args: str) -> list[dict]:
    result = runner.invoke(cli, ["list", *args])
    assert result.exit_code == 0, result.output
    return [json.loads(line) for line in result.output.splitlines() if line.startswith("{")]


class TestEnqueueCommand:
    """Tests for `queuectl enqueue`."""

    def test_enqueue(self, runner: CliRunner):
        result = runner.invoke(cli, ["enqueue", '{"id": "job1", "command": "echo hi"}'])

        assert result.exit_code == 0, result.output
        assert "Enqueued job job1" in result.output

        jobs = list_jobs(runner)
        assert len(jobs) == 1
        assert jobs[0]["id"] == "job1"
        assert jobs[0]["state"] == "pending"
        assert jobs[0]["attempts"] == 0
        assert jobs[0]["max_retries"] == 3

    def test_enqueue_invalid_json(self, runner: CliRunner):
        result = runner.invoke(cli, ["enqueue", "{not json"])

        assert result.exit_code != 0
        assert "Invalid job descriptor" in result.output
        assert list_jobs(runner) == []

    def test_enqueue_oversized_retry_budget(self, runner: CliRunner):
        result = runner.invoke(
            cli, ["enqueue", '{"command": "exit 0", "max_retries": 100000000000000000000}']
        )

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "max_retries" in result.output
        assert list_jobs(runner) == []

    def test_enqueue_duplicate(self, runner: CliRunner):
        runner.invoke(cli, ["enqueue", '{"id": "job1", "command": "echo hi"}'])

        result = runner.invoke(cli, ["enqueue", '{"id": "job1", "command": "echo again"}'])

        assert result.exit_code != 0
        assert "already exists" in result.output
        assert [job["command"] for job in list_jobs(runner)] == ["echo hi"]


class TestListAndStatus:
    """Tests for `queuectl list` and `queuectl status`."""

    def test_list_empty(self, runner: CliRunner):
        result = runner.invoke(cli, ["list"])

        assert result.exit_code == 0
        assert "No jobs" in result.output

    def test_list_by_state(self, runner: CliRunner):
        runner.invoke(cli, ["enqueue", '{"id": "a", "command": "exit 0"}'])
        runner.invoke(cli, ["enqueue", '{"id": "b", "command": "exit 0"}'])

        assert [job["id"] for job in list_jobs(runner, "--state", "pending")] == ["a", "b"]
        assert list_jobs(runner, "--state", "dead") == []
        assert len(list_jobs(runner, "--limit", "1")) == 1

    def test_list_rejects_unknown_state(self, runner: CliRunner):
        result = runner.invoke(cli, ["list", "--state", "failed"])

        assert result.exit_code == 2

    def test_status(self, runner: CliRunner):
        runner.invoke(cli, ["enqueue", '{"command": "exit 0"}'])

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "pending: 1" in result.output
        assert "dead: 0" in result.output
        assert "No workers running" in result.output

    def test_status_shows_registered_workers(self, runner: CliRunner):
        WorkerRegistry(get_settings().worker_pidfile).save([os.getpid()])

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Active workers: 1/1" in result.output
        assert f"pid {os.getpid()} (running)" in result.output


class TestDlqCommands:
    """Tests for `queuectl dlq`."""

    def test_dlq_empty(self, runner: CliRunner):
        result = runner.invoke(cli, ["dlq", "list"])

        assert result.exit_code == 0
        assert "DLQ empty" in result.output

    def test_dlq_retry_unknown_job(self, runner: CliRunner):
        result = runner.invoke(cli, ["dlq", "retry", "ghost"])

        assert result.exit_code != 0
        assert "not found in DLQ" in result.output

    def test_dlq_retry_pending_job(self, runner: CliRunner):
        runner.invoke(cli, ["enqueue", '{"id": "a", "command": "exit 0"}'])

        result = runner.invoke(cli, ["dlq", "retry", "a"])

        assert result.exit_code != 0
        assert "not found in DLQ" in result.output


class TestConfigCommands:
    """Tests for `queuectl config`."""

    def test_get_all(self, runner: CliRunner):
        result = runner.invoke(cli, ["config", "get"])

        assert result.exit_code == 0
        values = json.loads(result.output)
        assert values == {"backoff_base": "2.0", "default_max_retries": "3"}

    def test_set_then_get(self, runner: CliRunner):
        result = runner.invoke(cli, ["config", "set", "backoff_base", "3"])
        assert result.exit_code == 0
        assert "Config backoff_base = 3" in result.output

        result = runner.invoke(cli, ["config", "get", "backoff_base"])
        assert result.output.strip() == "3"

    def test_get_unset_key(self, runner: CliRunner):
        result = runner.invoke(cli, ["config", "get", "nothing"])

        assert result.exit_code == 0
        assert "not set" in result.output

    def test_set_invalid_value(self, runner: CliRunner):
        result = runner.invoke(cli, ["config", "set", "default_max_retries", "many"])

        assert result.exit_code != 0
        assert "must be an integer" in result.output

    def test_set_oversized_max_retries(self, runner: CliRunner):
        result = runner.invoke(
            cli, ["config", "set", "default_max_retries", "100000000000000000000"]
        )

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "must be at most" in result.output

    def test_default_max_retries_applies_to_enqueue(self, runner: CliRunner):
        runner.invoke(cli, ["config", "set", "default_max_retries", "5"])
        runner.invoke(cli, ["enqueue", '{"command": "exit 0"}'])

        assert list_jobs(runner)[0]["max_retries"] == 5


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
class TestWorkerCommands:
    """Tests for `queuectl worker start|stop`."""

    def test_stop_without_registry(self, runner: CliRunner):
        result = runner.invoke(cli, ["worker", "stop"])

        assert result.exit_code != 0
        assert "No workers running" in result.output

    def test_stop_signals_registered_processes(self, runner: CliRunner):
        process = subprocess.Popen(["sleep", "30"])
        registry = WorkerRegistry(get_settings().worker_pidfile)
        registry.save([process.pid])

        try:
            result = runner.invoke(cli, ["worker", "stop"])
            returncode = process.wait(timeout=10)
        finally:
            if process.poll() is None:
                process.kill()

        assert result.exit_code == 0, result.output
        assert f"Sent SIGTERM to {process.pid}" in result.output
        assert returncode == -signal.SIGTERM
        assert registry.exists() is False

    def test_stop_tolerates_exited_workers(self, runner: CliRunner):
        process = subprocess.Popen([sys.executable, "-c", "pass"])
        process.wait()
        WorkerRegistry(get_settings().worker_pidfile).save([process.pid])

        result = runner.invoke(cli, ["worker", "stop"])

        assert result.exit_code == 0
        assert "is not running" in result.output

    def test_start_refuses_when_workers_alive(self, runner: CliRunner):
        WorkerRegistry(get_settings().worker_pidfile).save([os.getpid()])

        result = runner.invoke(cli, ["worker", "start", "--count", "2"])

        assert result.exit_code != 0
        assert "Stop them first" in result.output


def test_version(runner: CliRunner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "queuectl" in result.output
