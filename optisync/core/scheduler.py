"""
Clock and deferred-action primitive for the overlay store.

The store never sleeps: it asks a ``Scheduler`` to run a callback after a
delay and gets back a cancellable handle.  ``LoopScheduler`` is the
production implementation on top of the running asyncio event loop.
Times are milliseconds throughout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class DeferredHandle(Protocol):
    """Handle to a scheduled callback."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Monotonic clock plus delayed callbacks."""

    def now(self) -> float:
        """Current monotonic time in milliseconds."""
        ...

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> DeferredHandle:
        """Run ``callback`` once after ``delay_ms``."""
        ...


class LoopScheduler:
    """
    Scheduler backed by an asyncio event loop.

    When no loop is given, the running loop at ``call_later`` time is used,
    so the scheduler can be constructed outside of any coroutine.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def now(self) -> float:
        # asyncio's default loop clock is time.monotonic()
        return time.monotonic() * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(delay_ms, 0.0) / 1000.0, callback)
