"""Diff engine, state machines, scheduler and error taxonomy."""
from __future__ import annotations
