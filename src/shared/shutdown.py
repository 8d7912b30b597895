"""Graceful shutdown handler for the discovery scheduler.

Handles both Windows (``signal.signal``) and Unix
(``loop.add_signal_handler``) signal registration with a reentrancy guard.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)


class GracefulShutdown:
    """Manages graceful shutdown on SIGINT / SIGTERM.

    Usage::

        shutdown = GracefulShutdown()
        shutdown.install()
        shutdown.on_stop(scheduler.shutdown)

        shutdown.wait()
    """

    def __init__(self) -> None:
        self._stop_event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._handling = False  # reentrancy guard

    @property
    def should_stop(self) -> bool:
        """Whether a shutdown signal has been received."""
        return self._stop_event.is_set()

    def on_stop(self, callback: Callable[[], None]) -> None:
        """Register *callback* to run once when shutdown begins."""
        self._callbacks.append(callback)

    def install(self) -> None:
        """Register signal handlers for SIGINT and SIGTERM.

        On Windows, uses ``signal.signal`` directly.
        On Unix, uses ``loop.add_signal_handler`` if a running event loop
        is available, falling back to ``signal.signal``.
        """
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)
        else:
            try:
                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, self.request_stop)
            except RuntimeError:
                # No running loop -- fall back to signal.signal
                signal.signal(signal.SIGINT, self._signal_handler)
                signal.signal(signal.SIGTERM, self._signal_handler)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown is requested (or *timeout* elapses)."""
        return self._stop_event.wait(timeout)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows / fallback)."""
        logger.warning("Received signal %s -- initiating graceful shutdown", signum)
        self.request_stop()

    def request_stop(self) -> None:
        if self._handling or self._stop_event.is_set():
            return  # reentrancy guard
        self._handling = True
        try:
            self._stop_event.set()
            for callback in self._callbacks:
                try:
                    callback()
                except Exception:
                    logger.exception("Shutdown callback failed")
        finally:
            self._handling = False
