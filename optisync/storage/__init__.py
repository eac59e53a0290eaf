"""
In-memory overlay storage.

For v1 the pending overlay lives in process memory, one store per session.
"""
from __future__ import annotations
