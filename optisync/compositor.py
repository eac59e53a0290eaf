"""
Overlay Compositor.

Merges snapshots from the read channel with the pending overlay so the UI
never shows a stale read on top of an in-flight edit.

    snapshot → record baseline → overlay present?  → optimistic value
                               → pending deletion? → None (hidden)
                               → otherwise         → snapshot

Safe to call on every incoming snapshot; it only reads overlay state.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from optisync.contracts.json_types import EntityDict
from optisync.storage.overlay_store import PendingOverlayStore, Timestamp

logger = logging.getLogger(__name__)


class OverlayCompositor:
    """Produces the value a consumer should render for an entity."""

    def __init__(self, store: PendingOverlayStore) -> None:
        self._store = store

    def apply(
        self,
        entity_id: str,
        snapshot_value: Any,
        observed_at: Timestamp | None = None,
    ) -> Any:
        """
        Return the effective value of ``entity_id`` given its latest snapshot.

        The active overlay wins over any snapshot.  Without an overlay the
        snapshot is returned, unless ``observed_at`` marks it older than the
        recorded baseline, in which case the newer baseline is returned.
        """
        accepted = self._store.record_snapshot(entity_id, snapshot_value, observed_at)

        if self._store.is_deleted(entity_id):
            return None

        overlay = self._store.get(entity_id)
        if overlay is not None:
            return overlay

        if not accepted:
            return self._store.baseline(entity_id)
        return snapshot_value

    def apply_many(
        self,
        snapshots: Iterable[EntityDict],
        id_field: str = "id",
    ) -> list[Any]:
        """
        Apply the overlay to a list of entity snapshots.

        Entities pending deletion are dropped.  Pending creations not yet
        visible in ``snapshots`` (by temp id or resolved real id) are
        appended in registration order.
        """
        result: list[Any] = []
        seen: set[str] = set()

        for snapshot in snapshots:
            entity_id = snapshot.get(id_field)
            if entity_id is None:
                result.append(snapshot)
                continue
            seen.add(entity_id)
            value = self.apply(entity_id, snapshot)
            if value is not None:
                result.append(value)

        for op in self._store.pending_creations():
            if op.entity_id in seen or (op.real_id is not None and op.real_id in seen):
                continue
            result.append(self._store.get(op.entity_id))

        return result

    def is_pending(self, entity_id: str) -> bool:
        """Whether ``entity_id`` is currently shown from the overlay."""
        return self._store.has_pending(entity_id)
