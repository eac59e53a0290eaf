"""
Overlay State Machines.

Explicit state transitions for optimistic operations and the edits that
drive them.  Never mutate a status directly — always go through
assert_transition() / assert_edit_transition().

Operation states (one per registered overlay):
    PENDING      — Overlay registered; optimistic value may be authoritative
    ACKNOWLEDGED — Write confirmed and grace period elapsed (or superseded ack)
    ROLLED_BACK  — Write failed or cancelled; overlay released immediately
    EXPIRED      — Lock elapsed with no terminal signal; overlay released

Edit states (one per submit_edit call):
    IDLE         — Edit received; diff not yet computed
    UNCHANGED    — Diff empty; no write, overlay untouched
    SUBMITTING   — Overlay registered; write in flight
    AWAITING_ACK — Write succeeded; grace timer running
    SETTLED      — Grace elapsed; this edit's overlay released
    SUPERSEDED   — Grace elapsed, but a newer edit owns the overlay
    ROLLED_BACK  — Write failed, or overlay released early (explicit
                   rollback or lock expiry during the grace period)

Invariants:
    1. Every operation reaches a terminal state.
    2. Terminal states are final.
    3. A superseded operation still transitions on its own signals;
       only its effect on the rendered overlay is suppressed.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class OperationStatus(str, Enum):
    """Lifecycle of a single optimistic operation."""

    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    ROLLED_BACK = "rolled_back"
    EXPIRED = "expired"


class OperationKind(str, Enum):
    """What an operation does to its entity."""

    UPDATE = "update"
    DELETE = "delete"
    CREATE = "create"


class EditStatus(str, Enum):
    """Lifecycle of a coordinator-driven edit."""

    IDLE = "idle"
    UNCHANGED = "unchanged"
    SUBMITTING = "submitting"
    AWAITING_ACK = "awaiting_ack"
    SETTLED = "settled"
    SUPERSEDED = "superseded"
    ROLLED_BACK = "rolled_back"


# Terminal states: no further transitions allowed.
TERMINAL_STATES: frozenset[OperationStatus] = frozenset({
    OperationStatus.ACKNOWLEDGED,
    OperationStatus.ROLLED_BACK,
    OperationStatus.EXPIRED,
})

TERMINAL_EDIT_STATES: frozenset[EditStatus] = frozenset({
    EditStatus.UNCHANGED,
    EditStatus.SETTLED,
    EditStatus.SUPERSEDED,
    EditStatus.ROLLED_BACK,
})

# Allowed transitions: from_state -> set of valid to_states.
_TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    OperationStatus.PENDING: frozenset({
        OperationStatus.ACKNOWLEDGED,
        OperationStatus.ROLLED_BACK,
        OperationStatus.EXPIRED,
    }),
    OperationStatus.ACKNOWLEDGED: frozenset(),
    OperationStatus.ROLLED_BACK: frozenset(),
    OperationStatus.EXPIRED: frozenset(),
}

_EDIT_TRANSITIONS: dict[EditStatus, frozenset[EditStatus]] = {
    EditStatus.IDLE: frozenset({
        EditStatus.UNCHANGED,
        EditStatus.SUBMITTING,
    }),
    EditStatus.SUBMITTING: frozenset({
        EditStatus.AWAITING_ACK,
        EditStatus.ROLLED_BACK,
    }),
    EditStatus.AWAITING_ACK: frozenset({
        EditStatus.SETTLED,
        EditStatus.SUPERSEDED,
        EditStatus.ROLLED_BACK,
    }),
    EditStatus.UNCHANGED: frozenset(),
    EditStatus.SETTLED: frozenset(),
    EditStatus.SUPERSEDED: frozenset(),
    EditStatus.ROLLED_BACK: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a state transition violates the state machine."""

    def __init__(
        self,
        from_state: OperationStatus | EditStatus,
        to_state: OperationStatus | EditStatus,
    ):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition: {from_state.value} → {to_state.value}"
        )


def assert_transition(
    from_state: OperationStatus,
    to_state: OperationStatus,
) -> None:
    """
    Validate that an operation state transition is allowed.

    Raises InvalidTransitionError if the transition violates the state machine.
    """
    allowed = _TRANSITIONS.get(from_state, frozenset())
    if to_state not in allowed:
        raise InvalidTransitionError(from_state, to_state)


def assert_edit_transition(
    from_state: EditStatus,
    to_state: EditStatus,
) -> None:
    """Validate that an edit state transition is allowed."""
    allowed = _EDIT_TRANSITIONS.get(from_state, frozenset())
    if to_state not in allowed:
        raise InvalidTransitionError(from_state, to_state)


def is_terminal(status: OperationStatus) -> bool:
    """Check if an operation status is terminal (no further transitions)."""
    return status in TERMINAL_STATES


def is_edit_terminal(status: EditStatus) -> bool:
    """Check if an edit status is terminal."""
    return status in TERMINAL_EDIT_STATES
