"""
optisync — optimistic mutation overlay with a diff-based patch engine.

Keeps a user's in-flight edit of a server-held entity visible while
eventually consistent snapshots of that entity keep arriving, sends only
the changed fields, and reconciles by acknowledgment (after a grace period)
or rollback without racing newer edits.

    session = OverlaySession.create(write=api.patch_project)
    result = await session.submit_edit("proj-1", prior, proposed)
    shown = session.get_display_value("proj-1", latest_snapshot)
"""
from __future__ import annotations

from optisync.compositor import OverlayCompositor
from optisync.coordinator import MutationCoordinator
from optisync.core.diff import compute_diff, is_diff_empty
from optisync.core.errors import (
    InvalidCreateResponse,
    OverlayError,
    ValidationError,
    WriteFailure,
)
from optisync.session import OverlaySession
from optisync.storage.overlay_store import Operation, OperationToken, PendingOverlayStore

__all__ = [
    "MutationCoordinator",
    "Operation",
    "OperationToken",
    "OverlayCompositor",
    "OverlayError",
    "OverlaySession",
    "PendingOverlayStore",
    "ValidationError",
    "WriteFailure",
    "InvalidCreateResponse",
    "compute_diff",
    "is_diff_empty",
]
