"""
Overlay session — the caller-facing entry point.

One session per signed-in user: ``OverlaySession.create()`` at session start
wires a store, compositor and coordinator together; ``clear()`` on logout
drops every overlay and rolls back edits still in flight.

Caller API:
    await session.submit_edit(entity_id, prior, proposed) → EditResult
    session.get_display_value(entity_id, latest_snapshot)  → value to render
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from optisync.compositor import OverlayCompositor
from optisync.config import Settings, get_settings
from optisync.contracts.json_types import CreateFn, DeleteFn, EntityDict, WriteFn
from optisync.coordinator import MutationCoordinator
from optisync.core.scheduler import Scheduler
from optisync.models.edit import EditResult, OverlayStats
from optisync.storage.overlay_store import PendingOverlayStore, Timestamp

logger = logging.getLogger(__name__)


class OverlaySession:
    """Store + compositor + coordinator for one user session."""

    def __init__(
        self,
        store: PendingOverlayStore,
        compositor: OverlayCompositor,
        coordinator: MutationCoordinator,
    ) -> None:
        self.store = store
        self.compositor = compositor
        self.coordinator = coordinator
        self._cleanup_task: asyncio.Task[None] | None = None

    @classmethod
    def create(
        cls,
        write: WriteFn,
        settings: Settings | None = None,
        scheduler: Scheduler | None = None,
    ) -> OverlaySession:
        """Build a fresh session around the external ``write`` collaborator.

        Created inside a running event loop, the session starts its
        cleanup sweep right away; otherwise call ``start_cleanup()`` once a
        loop is running.
        """
        settings = settings or get_settings()
        store = PendingOverlayStore(scheduler=scheduler, settings=settings)
        session = cls(
            store=store,
            compositor=OverlayCompositor(store),
            coordinator=MutationCoordinator(store, write),
        )
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; cleanup sweep not started")
        else:
            session.start_cleanup()
        logger.info(
            f"Overlay session created (grace={settings.ack_grace_ms}ms, "
            f"lock={settings.pending_lock_ms}ms)"
        )
        return session

    # =========================================================================
    # Caller API
    # =========================================================================

    async def submit_edit(self, entity_id: str, prior: Any, proposed: Any) -> EditResult:
        return await self.coordinator.submit_edit(entity_id, prior, proposed)

    async def submit_deletion(self, entity_id: str, delete: DeleteFn) -> EditResult:
        return await self.coordinator.submit_deletion(entity_id, delete)

    async def submit_creation(self, temp_id: str, value: Any, create: CreateFn) -> EditResult:
        return await self.coordinator.submit_creation(temp_id, value, create)

    def get_display_value(
        self,
        entity_id: str,
        latest_snapshot: Any,
        observed_at: Timestamp | None = None,
    ) -> Any:
        return self.compositor.apply(entity_id, latest_snapshot, observed_at)

    def get_display_list(
        self,
        snapshots: Iterable[EntityDict],
        id_field: str = "id",
    ) -> list[Any]:
        return self.compositor.apply_many(snapshots, id_field=id_field)

    def stats(self) -> OverlayStats:
        return self.store.stats()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_cleanup(self) -> asyncio.Task[None]:
        """Start the periodic cleanup_expired() sweep on the running loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        return self._cleanup_task

    async def stop_cleanup(self) -> None:
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self) -> None:
        interval = self.store.settings.cleanup_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            expired = self.store.cleanup_expired()
            if expired:
                logger.info(f"🧹 Expired {expired} stale overlay(s)")

    def clear(self) -> None:
        """End the session: cancel the sweep and drop every overlay."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        self.store.clear()
        logger.info("Overlay session cleared")
