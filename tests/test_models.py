"""Tests for EditResult / OverlayStats models."""
from __future__ import annotations

import pytest

from optisync.core.state_machine import EditStatus, InvalidTransitionError
from optisync.models import EditResult, OverlayStats


def test_edit_result_defaults() -> None:
    result = EditResult(entity_id="proj-1")

    assert result.status == EditStatus.IDLE
    assert result.diff == {}
    assert result.operation_id is None
    assert not result.written


def test_camel_case_dump() -> None:
    """by_alias=True produces the camelCase shape UI consumers read."""
    payload = EditResult(entity_id="proj-1", diff={"status": "closed"}).model_dump(
        by_alias=True, mode="json"
    )

    assert payload["entityId"] == "proj-1"
    assert payload["status"] == "idle"
    assert "operationId" in payload
    assert "updatedAt" in payload


def test_populate_by_alias() -> None:
    assert EditResult(entityId="proj-1").entity_id == "proj-1"


def test_transition_to_validates() -> None:
    result = EditResult(entity_id="proj-1")
    result.transition_to(EditStatus.SUBMITTING)

    assert result.written
    with pytest.raises(InvalidTransitionError):
        result.transition_to(EditStatus.SETTLED)


def test_changed_fields_sorted() -> None:
    result = EditResult(entity_id="proj-1", diff={"b": 1, "a": 2})
    assert result.changed_fields == ["a", "b"]


def test_stats_camel_case() -> None:
    dumped = OverlayStats(active=2, pending_deletions=1).model_dump(by_alias=True)
    assert dumped["pendingDeletions"] == 1
    assert dumped["scheduledAcks"] == 0
