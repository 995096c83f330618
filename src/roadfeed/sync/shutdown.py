"""Cooperative shutdown flag shared by long-running loops."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

_logger = logging.getLogger(__name__)


class ShutdownSignal:
    """Set once a shutdown was requested.

    Loops check :attr:`is_set` between units of work (pages, passes,
    cycles) so an in-flight commit always completes and no new fetch
    starts afterwards.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def request(self, reason: str = "requested") -> None:
        if not self._event.is_set():
            _logger.info("Shutdown %s; finishing current work", reason)
        self._event.set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait up to *timeout* seconds; return ``True`` if shutdown was requested."""
        if timeout is None:
            await self._event.wait()
            return True
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout)
        return self._event.is_set()

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Request shutdown on SIGINT and SIGTERM."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request, f"on {sig.name}")
            except (NotImplementedError, RuntimeError):
                _logger.debug("Signal handlers not supported for %s", sig.name)

    def uninstall(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
