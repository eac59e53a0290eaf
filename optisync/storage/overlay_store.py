"""
Pending Overlay Store.

Tracks, per entity id, the optimistic operation whose value the UI should
render until the server's read channel catches up.

Key design:
    - One *active* operation per entity; the newest registration always wins
    - Staleness is detected by a per-entity generation counter: every
      registration bumps it, and acknowledge/rollback only act when the
      token's generation is still the active one
    - Superseded operations keep their own lifecycle (they still reach a
      terminal state) but can no longer touch the overlay
    - Terminal operations linger as tombstones so duplicate late signals are
      recognised, then get purged by cleanup_expired()
    - Acknowledgment is deferred through a Scheduler; stale timers fire
      harmlessly instead of being cancelled

The store is an explicitly constructed object — one per session — created at
session start and cleared on logout.  asyncio runs every mutator to
completion without yielding, so check-then-act is atomic.
"""

from __future__ import annotations

import logging
import uuid
from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from optisync.config import Settings, get_settings
from optisync.core.errors import StaleOperation
from optisync.core.scheduler import DeferredHandle, LoopScheduler, Scheduler
from optisync.core.state_machine import (
    OperationKind,
    OperationStatus,
    assert_transition,
    is_terminal,
)
from optisync.models.edit import OverlayStats

logger = logging.getLogger(__name__)

Timestamp = Union[float, datetime]


@dataclass(frozen=True)
class OperationToken:
    """Identifies one registration: the entity plus the generation it got."""

    entity_id: str
    generation: int


@dataclass
class Operation:
    """
    One optimistic edit in flight.

    ``optimistic_value`` is the full entity as the UI should show it while
    this operation governs the entity (None for deletions).
    """

    operation_id: str
    entity_id: str
    generation: int
    kind: OperationKind
    optimistic_value: Any
    submitted_at: float
    lock_until: float
    status: OperationStatus = OperationStatus.PENDING
    settled_at: Optional[float] = None
    superseded_by: Optional[int] = None
    real_id: Optional[str] = None

    @property
    def token(self) -> OperationToken:
        return OperationToken(self.entity_id, self.generation)

    @property
    def is_superseded(self) -> bool:
        return self.superseded_by is not None

    def transition_to(self, new_status: OperationStatus, now: float) -> None:
        """
        Transition to a new status with state machine validation.

        Raises InvalidTransitionError if the transition is not allowed.
        """
        assert_transition(self.status, new_status)
        old_status = self.status
        self.status = new_status
        self.settled_at = now
        logger.debug(
            f"Operation {self.operation_id[:8]} ({self.entity_id[:8]} gen={self.generation}): "
            f"{old_status.value} → {new_status.value}"
        )


@dataclass
class _Baseline:
    """Last known-good snapshot of an entity."""

    value: Any
    observed_at: Optional[Timestamp] = None
    recorded_at: float = 0.0


SettledCallback = Callable[[Operation], None]


class PendingOverlayStore:
    """
    Per-session store of optimistic overlays.

    Usage:
        store = PendingOverlayStore()

        token = store.begin_operation("proj-1", {"name": "Site A", "status": "closed"})
        try:
            await write("proj-1", {"status": "closed"})
        except Exception:
            store.rollback("proj-1", token)
            raise
        store.acknowledge("proj-1", token, grace_ms=5000)

        store.get("proj-1")  # → optimistic value until the grace period ends
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._scheduler: Scheduler = scheduler or LoopScheduler()
        self._settings = settings or get_settings()

        # entity_id -> operation currently governing the rendered value
        self._active: dict[str, Operation] = {}
        # every non-terminal operation, including superseded ones
        self._inflight: dict[OperationToken, Operation] = {}
        # terminal operations kept briefly to recognise duplicate late signals
        self._tombstones: dict[OperationToken, Operation] = {}
        # entity_id -> last generation handed out (never reused)
        self._generations: dict[str, int] = {}
        self._baselines: dict[str, _Baseline] = {}
        self._timers: dict[OperationToken, DeferredHandle] = {}
        self._settle_callbacks: dict[OperationToken, SettledCallback] = {}
        # real_id -> temp_id for creations resolved by the server
        self._aliases: dict[str, str] = {}

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def settings(self) -> Settings:
        return self._settings

    # =========================================================================
    # Registration
    # =========================================================================

    def begin_operation(
        self,
        entity_id: str,
        optimistic_value: Any,
        lock_ms: int | None = None,
    ) -> OperationToken:
        """
        Register ``optimistic_value`` as the authoritative overlay for ``entity_id``.

        Any operation already active for the entity becomes superseded: it
        keeps its own lifecycle but can no longer change the overlay.
        """
        return self._register(entity_id, OperationKind.UPDATE, deepcopy(optimistic_value), lock_ms)

    def begin_deletion(self, entity_id: str, lock_ms: int | None = None) -> OperationToken:
        """Hide ``entity_id`` until the deletion is acknowledged or rolled back."""
        return self._register(entity_id, OperationKind.DELETE, None, lock_ms)

    def begin_creation(
        self,
        temp_id: str,
        optimistic_value: Any,
        lock_ms: int | None = None,
    ) -> OperationToken:
        """Show a not-yet-created entity under a client-side temporary id."""
        return self._register(temp_id, OperationKind.CREATE, deepcopy(optimistic_value), lock_ms)

    def resolve_creation(self, temp_id: str, real_id: str) -> None:
        """Record the server-assigned id of a pending creation."""
        op = self._active.get(temp_id)
        if op is None or op.kind != OperationKind.CREATE:
            logger.debug(f"No pending creation for {temp_id[:8]}; ignoring real id {real_id[:8]}")
            return
        op.real_id = real_id
        self._aliases[real_id] = temp_id
        logger.info(f"Creation {temp_id[:8]} resolved to {real_id[:8]}")

    def _register(
        self,
        entity_id: str,
        kind: OperationKind,
        value: Any,
        lock_ms: int | None,
    ) -> OperationToken:
        generation = self._generations.get(entity_id, 0) + 1
        self._generations[entity_id] = generation

        now = self._scheduler.now()
        lock = self._settings.pending_lock_ms if lock_ms is None else lock_ms
        op = Operation(
            operation_id=str(uuid.uuid4()),
            entity_id=entity_id,
            generation=generation,
            kind=kind,
            optimistic_value=value,
            submitted_at=now,
            lock_until=now + lock,
        )

        previous = self._active.get(entity_id)
        if previous is not None:
            previous.superseded_by = generation
            logger.debug(
                f"Operation {previous.operation_id[:8]} on {entity_id[:8]} "
                f"superseded by gen={generation}"
            )

        self._active[entity_id] = op
        self._inflight[op.token] = op

        logger.info(
            f"Began {kind.value} on {entity_id[:8]} gen={generation} "
            f"op={op.operation_id[:8]}"
        )
        return op.token

    # =========================================================================
    # Terminal signals
    # =========================================================================

    def acknowledge(
        self,
        entity_id: str,
        token: OperationToken,
        grace_ms: int | None = None,
        on_settled: SettledCallback | None = None,
    ) -> None:
        """
        Release the overlay ``grace_ms`` after a confirmed write.

        A stale token is a no-op for the overlay; the superseded operation is
        marked acknowledged at once.  ``on_settled`` receives the operation
        once its acknowledgment has resolved either way.
        """
        try:
            self._require_active(entity_id, token)
        except StaleOperation as exc:
            op = self._settle_stale(token, OperationStatus.ACKNOWLEDGED, exc)
            if op is not None and on_settled is not None:
                on_settled(op)
            return

        if token in self._timers:
            logger.debug(f"Acknowledgment already scheduled for {entity_id[:8]} gen={token.generation}")
            return

        grace = self._settings.ack_grace_ms if grace_ms is None else grace_ms
        if on_settled is not None:
            self._settle_callbacks[token] = on_settled
        self._timers[token] = self._scheduler.call_later(
            grace,
            lambda: self._fire_acknowledgment(token),
        )
        logger.debug(f"Acknowledgment for {entity_id[:8]} gen={token.generation} in {grace}ms")

    def rollback(self, entity_id: str, token: OperationToken) -> None:
        """Release the overlay immediately; subsequent reads show the snapshot."""
        try:
            op = self._require_active(entity_id, token)
        except StaleOperation as exc:
            self._settle_stale(token, OperationStatus.ROLLED_BACK, exc)
            return

        self._finish(op, OperationStatus.ROLLED_BACK)
        del self._active[entity_id]
        logger.info(f"⏪ Rolled back {op.kind.value} on {entity_id[:8]} gen={op.generation}")

    def _fire_acknowledgment(self, token: OperationToken) -> None:
        self._timers.pop(token, None)
        on_settled = self._settle_callbacks.pop(token, None)
        op = self._inflight.get(token) or self._tombstones.get(token)
        if op is None:
            logger.debug(f"Acknowledgment fired for purged operation {token.entity_id[:8]} gen={token.generation}")
            return

        if not is_terminal(op.status):
            self._finish(op, OperationStatus.ACKNOWLEDGED)
            if self._active.get(op.entity_id) is op:
                del self._active[op.entity_id]
                logger.info(f"✅ Settled {op.kind.value} on {op.entity_id[:8]} gen={op.generation}")
            else:
                logger.debug(
                    f"Acknowledgment for {op.entity_id[:8]} gen={op.generation} "
                    f"fired after supersession; overlay untouched"
                )

        if on_settled is not None:
            on_settled(op)

    def _require_active(self, entity_id: str, token: OperationToken) -> Operation:
        active = self._active.get(entity_id)
        if active is None or token.entity_id != entity_id or active.generation != token.generation:
            raise StaleOperation(
                entity_id,
                token.generation,
                active.generation if active is not None else None,
            )
        return active

    def _settle_stale(
        self,
        token: OperationToken,
        status: OperationStatus,
        exc: StaleOperation,
    ) -> Operation | None:
        """Finish a superseded operation without touching the overlay."""
        if token.entity_id != exc.entity_id:
            logger.debug(f"{exc}; token belongs to {token.entity_id[:8]}, ignored")
            return None

        op = self._inflight.get(token)
        if op is not None:
            self._finish(op, status)
            logger.debug(f"{exc}; marked {status.value} without touching the overlay")
            return op

        op = self._tombstones.get(token)
        if op is not None:
            logger.debug(f"{exc}; duplicate signal, already {op.status.value}")
            return op

        logger.debug(f"{exc}; unknown token ignored")
        return None

    def _finish(self, op: Operation, status: OperationStatus, now: float | None = None) -> None:
        op.transition_to(status, self._scheduler.now() if now is None else now)
        self._inflight.pop(op.token, None)
        self._tombstones[op.token] = op
        if op.real_id is not None and self._aliases.get(op.real_id) == op.entity_id:
            del self._aliases[op.real_id]

    # =========================================================================
    # Reads
    # =========================================================================

    def _live(self, entity_id: str) -> Operation | None:
        """Active operation for ``entity_id`` whose lock has not run out.

        Reads honour ``lock_until`` directly so an overlay never outlives its
        lock just because no cleanup sweep has run yet.
        """
        op = self._active.get(entity_id)
        if op is None or self._scheduler.now() >= op.lock_until:
            return None
        return op

    def get(self, entity_id: str) -> Any | None:
        """Return a copy of the active optimistic value, or None if there is none."""
        op = self._live(entity_id)
        if op is None or op.kind == OperationKind.DELETE:
            return None
        return deepcopy(op.optimistic_value)

    def get_operation(self, entity_id: str) -> Operation | None:
        """Return the operation registered for ``entity_id``, lock ignored."""
        return self._active.get(entity_id)

    def has_pending(self, entity_id: str) -> bool:
        return self._live(self._aliases.get(entity_id, entity_id)) is not None

    def is_deleted(self, entity_id: str) -> bool:
        op = self._live(entity_id)
        return op is not None and op.kind == OperationKind.DELETE

    def is_creating(self, entity_id: str) -> bool:
        """True for the temp id or the resolved real id of a pending creation."""
        op = self._live(self._aliases.get(entity_id, entity_id))
        return op is not None and op.kind == OperationKind.CREATE

    def pending_creations(self) -> list[Operation]:
        """Pending creations in registration order."""
        ops = [
            op for op in self._active.values()
            if op.kind == OperationKind.CREATE and self._live(op.entity_id) is op
        ]
        return sorted(ops, key=lambda op: op.submitted_at)

    # =========================================================================
    # Snapshot baseline
    # =========================================================================

    def record_snapshot(
        self,
        entity_id: str,
        value: Any,
        observed_at: Timestamp | None = None,
    ) -> bool:
        """
        Record ``value`` as the last known-good state of ``entity_id``.

        Returns False when ``observed_at`` is older than the current
        baseline's; that snapshot is discarded.
        """
        current = self._baselines.get(entity_id)
        if (
            observed_at is not None
            and current is not None
            and current.observed_at is not None
            and observed_at < current.observed_at
        ):
            logger.debug(
                f"Rejecting out-of-order snapshot for {entity_id[:8]}: "
                f"{observed_at!r} < {current.observed_at!r}"
            )
            return False

        self._baselines[entity_id] = _Baseline(
            value=value,
            observed_at=observed_at,
            recorded_at=self._scheduler.now(),
        )
        return True

    def baseline(self, entity_id: str) -> Any | None:
        """Last known-good snapshot value, or None if none was recorded."""
        current = self._baselines.get(entity_id)
        return current.value if current is not None else None

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def cleanup_expired(self, now: float | None = None) -> int:
        """
        Expire pending operations past their lock, then purge old tombstones
        and the baselines of entities nothing is pending on.

        Returns count of expired operations.
        """
        now = self._scheduler.now() if now is None else now
        expired_count = 0

        for op in list(self._inflight.values()):
            if now < op.lock_until:
                continue
            self._finish(op, OperationStatus.EXPIRED, now)
            if self._active.get(op.entity_id) is op:
                del self._active[op.entity_id]
            expired_count += 1
            logger.info(
                f"Expired {op.kind.value} on {op.entity_id[:8]} gen={op.generation} "
                f"(age: {now - op.submitted_at:.0f}ms)"
            )

        ttl = self._settings.tombstone_ttl_ms
        for token, op in list(self._tombstones.items()):
            if op.settled_at is not None and now - op.settled_at > ttl:
                del self._tombstones[token]

        busy = set(self._active) | {op.entity_id for op in self._inflight.values()}
        baseline_ttl = self._settings.baseline_ttl_ms
        for entity_id, current in list(self._baselines.items()):
            if entity_id not in busy and now - current.recorded_at > baseline_ttl:
                del self._baselines[entity_id]

        return expired_count

    def clear(self) -> None:
        """Cancel scheduled acknowledgments and drop all state (session end).

        In-flight operations are rolled back and kept as tombstones, and any
        pending ``on_settled`` callback receives its operation, so callers
        holding an edit never wait on a signal that can no longer arrive.
        A write that resolves after the clear finds the tombstone and is
        reported rolled back too.

        Generation counters survive so a late signal from before the clear
        can never match a newer registration.
        """
        now = self._scheduler.now()
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        dropped = list(self._inflight.values())
        for op in dropped:
            self._finish(op, OperationStatus.ROLLED_BACK, now)

        callbacks = list(self._settle_callbacks.items())
        self._settle_callbacks.clear()
        self._active.clear()
        self._baselines.clear()
        self._aliases.clear()
        logger.info(f"Overlay store cleared ({len(dropped)} in-flight operation(s) rolled back)")

        for token, on_settled in callbacks:
            op = self._tombstones.get(token)
            if op is not None:
                on_settled(op)

    def stats(self) -> OverlayStats:
        kinds = [op.kind for op in self._active.values()]
        return OverlayStats(
            active=len(self._active),
            pending_updates=kinds.count(OperationKind.UPDATE),
            pending_deletions=kinds.count(OperationKind.DELETE),
            pending_creations=kinds.count(OperationKind.CREATE),
            inflight=len(self._inflight),
            tombstones=len(self._tombstones),
            baselines=len(self._baselines),
            scheduled_acks=len(self._timers),
        )

    @property
    def count(self) -> int:
        """Number of entities with an active overlay."""
        return len(self._active)
