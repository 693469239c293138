"""
Debouncing on an asyncio event loop.

The callback runs once, `delay` seconds after the last trigger; every new
trigger restarts the window.
"""

import asyncio
from typing import Any, Callable, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class Debouncer:
    """Trailing-edge debouncer backed by loop.call_later."""

    def __init__(
        self,
        delay: float,
        callback: Callable[..., Any],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Args:
            delay: Quiescence window in seconds
            callback: Invoked with the arguments of the last trigger
            loop: Event loop (the running loop if None)
        """
        self.delay = delay
        self.callback = callback
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: Tuple[Any, ...] = ()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args: Any) -> None:
        """(Re)start the quiescence window."""
        loop = self._loop or asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._args = args
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        """Drop a pending call."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> None:
        """Run a pending call now."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def _fire(self) -> None:
        self._handle = None
        logger.debug("debounce_fired", delay=self.delay)
        self.callback(*self._args)
