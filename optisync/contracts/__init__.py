"""Shared type contracts for the overlay layer."""

from optisync.contracts.json_types import (
    CreateFn,
    DeleteFn,
    Diff,
    EntityDict,
    WriteFn,
)

__all__ = [
    "CreateFn",
    "DeleteFn",
    "Diff",
    "EntityDict",
    "WriteFn",
]
