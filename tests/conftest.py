"""Pytest configuration and fixtures."""
from __future__ import annotations

from typing import Callable

import pytest

from optisync.config import Settings
from optisync.storage.overlay_store import PendingOverlayStore


class ManualHandle:
    """Cancellable handle returned by ManualScheduler.call_later."""

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """Virtual clock: callbacks only run when a test calls advance()."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = start_ms
        self._handles: list[ManualHandle] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self._now + max(delay_ms, 0.0), callback)
        self._handles.append(handle)
        return handle

    def advance(self, ms: float) -> None:
        """Move the clock forward, running due callbacks in time order."""
        target = self._now + ms
        while True:
            due = [h for h in self._handles if not h.cancelled() and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self._now = handle.when
            handle.callback()
        self._now = target

    @property
    def pending(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled())


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def overlay_settings() -> Settings:
    """Settings with the production timing defaults, independent of the environment."""
    return Settings(
        ack_grace_ms=5000,
        pending_lock_ms=120_000,
        tombstone_ttl_ms=30_000,
        cleanup_interval_ms=5000,
        baseline_ttl_ms=300_000,
        identity_fields=["id"],
    )


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def store(scheduler: ManualScheduler, overlay_settings: Settings):
    """Fresh overlay store on a virtual clock for each test."""
    s = PendingOverlayStore(scheduler=scheduler, settings=overlay_settings)
    yield s
    s.clear()
