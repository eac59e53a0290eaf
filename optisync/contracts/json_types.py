"""Canonical type aliases for entities, diffs and snapshots.

The overlay layer is agnostic to entity shape: an entity is any mapping of
field name to value.  Import these names instead of spelling the shapes out
ad hoc.

Entity catalog:
  EntityDict    — a full entity value (field name → value)
  Diff          — field name → new value, changed fields only
  WriteFn       — the external write collaborator: (entity_id, diff) → awaitable
  CreateFn      — the external create collaborator: (temp_id, diff) → awaitable real id
  DeleteFn      — the external delete collaborator: (entity_id) → awaitable
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping

from typing_extensions import TypeAlias

EntityDict: TypeAlias = Mapping[str, Any]
"""A full entity value.  Read-only from the overlay's point of view."""

Diff: TypeAlias = dict[str, Any]
"""Changed fields only.  Produced by ``compute_diff``; sent to the write."""

WriteFn: TypeAlias = Callable[[str, Diff], Awaitable[Any]]
"""External write collaborator.  Raising means the write failed."""

CreateFn: TypeAlias = Callable[[str, Diff], Awaitable[str]]
"""External create collaborator.  Returns the server-assigned entity id."""

DeleteFn: TypeAlias = Callable[[str], Awaitable[Any]]
"""External delete collaborator.  Raising means the delete failed."""
