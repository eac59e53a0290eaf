"""
Result and status models surfaced to callers.

``EditResult`` is returned by ``MutationCoordinator.submit_edit`` while the
edit may still be awaiting acknowledgment; its ``status`` keeps moving
(``awaiting_ack`` → ``settled`` / ``superseded``) after it is returned.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from optisync.core.state_machine import EditStatus, assert_edit_transition

logger = logging.getLogger(__name__)


class WireModel(BaseModel):
    """Snake_case in Python, camelCase via ``model_dump(by_alias=True)`` for UI consumers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EditResult(WireModel):
    """Outcome of one submitted edit."""

    entity_id: str = Field(..., description="Entity the edit targets")
    status: EditStatus = Field(default=EditStatus.IDLE, description="Edit lifecycle state")
    diff: dict[str, Any] = Field(default_factory=dict, description="Fields sent to the write")
    operation_id: Optional[str] = Field(default=None, description="Overlay operation id (None when unchanged)")
    generation: Optional[int] = Field(default=None, description="Per-entity generation of the operation")
    response: Any = Field(default=None, description="Whatever the write returned")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def changed_fields(self) -> list[str]:
        """Names of the fields sent to the server, sorted."""
        return sorted(self.diff)

    @property
    def written(self) -> bool:
        """Whether the edit reached the external write at all."""
        return self.status not in (EditStatus.IDLE, EditStatus.UNCHANGED)

    def transition_to(self, new_status: EditStatus) -> None:
        """
        Transition to a new status with state machine validation.

        Raises InvalidTransitionError if the transition is not allowed.
        """
        assert_edit_transition(self.status, new_status)
        old_status = self.status
        self.status = new_status
        self.updated_at = datetime.now(timezone.utc)
        logger.debug(
            f"Edit {self.entity_id[:8]} gen={self.generation}: "
            f"{old_status.value} → {new_status.value}"
        )


class OverlayStats(WireModel):
    """Point-in-time counters for an overlay store."""

    active: int = 0
    pending_updates: int = 0
    pending_deletions: int = 0
    pending_creations: int = 0
    inflight: int = 0
    tombstones: int = 0
    baselines: int = 0
    scheduled_acks: int = 0
