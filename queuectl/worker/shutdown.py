"""
Cooperative shutdown for worker processes.

A termination signal only sets a flag. The worker looks at it between
iterations, so a job that is already running always finishes and has its
outcome recorded before the process exits.
"""

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ShutdownController:
    """Shutdown flag with a wait that returns as soon as the flag is set."""

    def __init__(self, signals: tuple[signal.Signals, ...] = DEFAULT_SIGNALS):
        self._signals = signals
        self._event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._event.is_set()

    def request(self, signum: int | None = None) -> None:
        """Request shutdown. Safe to call more than once."""
        if not self._event.is_set():
            logger.info(
                "Shutdown requested, finishing current job before exiting",
                extra={"signal": signal.Signals(signum).name if signum else None},
            )
        self._event.set()

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """
        Register signal handlers on ``loop``.

        Falls back to ``signal.signal`` on platforms without loop signal
        handlers.
        """
        self._loop = loop or asyncio.get_running_loop()
        for sig in self._signals:
            try:
                self._loop.add_signal_handler(sig, self.request, sig)
            except NotImplementedError:
                signal.signal(
                    sig,
                    lambda signum, frame: self._loop.call_soon_threadsafe(self.request, signum),
                )

    def uninstall(self) -> None:
        """Remove the handlers registered by ``install``."""
        if self._loop is None:
            return
        for sig in self._signals:
            try:
                self._loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)
        self._loop = None

    async def wait(self, timeout: float) -> bool:
        """
        Sleep for up to ``timeout`` seconds, waking early on shutdown.

        Returns:
            True if shutdown was requested.
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            pass
        return self._event.is_set()
