"""
Error taxonomy for the overlay layer.

    OverlayError
    ├── ValidationError   — malformed diff input; raised before any overlay registration
    ├── WriteFailure      — external write rejected; overlay already rolled back
    ├── StaleOperation    — internal; acknowledge/rollback for a superseded token
    └── InvalidCreateResponse — create returned no entity id; temp overlay rolled back

``StaleOperation`` never reaches callers: the store catches it and logs at
debug level.  It is an expected outcome of overlapping edits.
"""
from __future__ import annotations

from typing import Any


class OverlayError(Exception):
    """Base exception for overlay errors."""
    pass


class ValidationError(OverlayError):
    """Raised when diff computation receives a non-mapping original or candidate."""

    def __init__(self, message: str, value: Any = None) -> None:
        self.value = value
        super().__init__(message)


class WriteFailure(OverlayError):
    """Raised when the external write fails.

    The overlay for ``entity_id`` has already been rolled back by the time
    this reaches the caller.  The underlying exception is chained as
    ``__cause__`` and also kept on ``cause``.
    """

    def __init__(
        self,
        entity_id: str,
        diff: dict[str, Any],
        cause: BaseException | None = None,
    ) -> None:
        self.entity_id = entity_id
        self.diff = diff
        self.cause = cause
        fields = ", ".join(sorted(diff)) or "<none>"
        super().__init__(
            f"Write failed for {entity_id} (fields: {fields}): {cause!r}"
        )


class StaleOperation(OverlayError):
    """Raised internally when a token no longer governs its entity."""

    def __init__(self, entity_id: str, generation: int, active_generation: int | None) -> None:
        self.entity_id = entity_id
        self.generation = generation
        self.active_generation = active_generation
        super().__init__(
            f"Stale operation for {entity_id}: gen={generation}, "
            f"active={active_generation}"
        )


class InvalidCreateResponse(OverlayError):
    """Raised when a create collaborator returns no usable entity id.

    The server may already hold the new entity; only the temporary overlay
    is rolled back, and the entity shows up through the next snapshot.
    """

    def __init__(self, temp_id: str, response: Any) -> None:
        self.temp_id = temp_id
        self.response = response
        super().__init__(
            f"Create for {temp_id} returned no entity id (got {response!r}); "
            "the entity may exist on the server"
        )
