"""
Unit tests for the worker pidfile registry.
"""

import os
import subprocess
import sys

import pytest

from queuectl.cli.registry import WorkerRegistry, is_alive


class TestWorkerRegistry:
    """Tests for WorkerRegistry."""

    def test_missing_registry(self, tmp_path):
        registry = WorkerRegistry(tmp_path / "workers.pid")

        assert registry.exists() is False
        assert registry.load() == []

    def test_save_load_clear(self, tmp_path):
        registry = WorkerRegistry(tmp_path / "workers.pid")

        registry.save([101, 202])
        assert registry.exists() is True
        assert registry.load() == [101, 202]

        registry.clear()
        registry.clear()
        assert registry.exists() is False

    @pytest.mark.parametrize("content", ['{"pid": 1}', '["a"]', "[1, 2.5]"])
    def test_malformed_registry(self, tmp_path, content):
        path = tmp_path / "workers.pid"
        path.write_text(content)

        with pytest.raises(ValueError, match="Malformed"):
            WorkerRegistry(path).load()

    def test_alive_pids(self, tmp_path):
        finished = subprocess.Popen([sys.executable, "-c", "pass"])
        finished.wait()

        registry = WorkerRegistry(tmp_path / "workers.pid")
        registry.save([os.getpid(), finished.pid])

        assert registry.alive_pids() == [os.getpid()]


def test_is_alive_current_process():
    assert is_alive(os.getpid()) is True
