"""Pydantic models for results and store statistics."""

from optisync.models.edit import EditResult, OverlayStats, WireModel

__all__ = [
    "EditResult",
    "OverlayStats",
    "WireModel",
]
