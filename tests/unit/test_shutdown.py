"""
Unit tests for cooperative shutdown.
"""

import asyncio
import os
import signal
import sys
import time

import pytest

from queuectl.worker.shutdown import ShutdownController


class TestShutdownController:
    """Tests for ShutdownController."""

    async def test_not_requested_initially(self):
        assert ShutdownController().requested is False

    async def test_request_sets_flag(self):
        shutdown = ShutdownController()

        shutdown.request()
        shutdown.request()

        assert shutdown.requested is True

    async def test_wait_times_out(self):
        shutdown = ShutdownController()

        start = time.monotonic()
        assert await shutdown.wait(0.05) is False
        assert time.monotonic() - start >= 0.04

    async def test_wait_wakes_on_request(self):
        shutdown = ShutdownController()
        asyncio.get_running_loop().call_later(0.05, shutdown.request)

        start = time.monotonic()
        assert await shutdown.wait(5) is True
        assert time.monotonic() - start < 2

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    async def test_signal_requests_shutdown(self):
        shutdown = ShutdownController(signals=(signal.SIGUSR1,))
        shutdown.install()
        try:
            os.kill(os.getpid(), signal.SIGUSR1)
            assert await shutdown.wait(2) is True
        finally:
            shutdown.uninstall()
