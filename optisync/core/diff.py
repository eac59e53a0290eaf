"""
Diff Engine.

Computes the minimal set of changed fields between two versions of an
entity so the write path sends only what the user actually touched.

Equality rules (applied recursively by ``values_equal``):
    1. ``None`` and ``""`` are both "absent"; two absent values are equal.
       A key missing from a mapping reads as absent.
    2. Sequences (list/tuple) are equal iff same length and element-wise equal.
    3. Mappings are equal iff every key in the union of their keys is equal.
    4. If either side is a real number (never bool), both sides are converted
       to ``Decimal`` (floats via their shortest repr, strings parsed); two
       non-NaN results compare exactly, so large ints never collapse the way
       they would as floats.  Anything that fails to convert falls back to
       strict ``==``.

Form inputs are the main reason for rules 1 and 4: a cleared text box yields
``""`` where the server stored ``None``, and numeric inputs arrive as strings.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from copy import deepcopy
from decimal import Decimal, InvalidOperation
from numbers import Real
from typing import Any, Iterable

from pydantic import BaseModel

from optisync.contracts.json_types import Diff
from optisync.core.errors import ValidationError

logger = logging.getLogger(__name__)


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _is_number(value: Any) -> bool:
    return isinstance(value, (Real, Decimal)) and not isinstance(value, bool)


def _as_number(value: Any) -> Decimal | None:
    """Convert to Decimal for numeric comparison; None when not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    if number.is_nan():
        return None
    return number


def values_equal(a: Any, b: Any) -> bool:
    """Compare two field values under the normalisation rules above."""
    a_absent = _is_absent(a)
    b_absent = _is_absent(b)
    if a_absent and b_absent:
        return True
    if a_absent or b_absent:
        return False

    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(values_equal(x, y) for x, y in zip(a, b))

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        keys = set(a) | set(b)
        return all(values_equal(a.get(k), b.get(k)) for k in keys)

    if _is_number(a) or _is_number(b):
        num_a = _as_number(a)
        num_b = _as_number(b)
        if num_a is not None and num_b is not None:
            return num_a == num_b

    return bool(a == b)


def _as_mapping(value: Any, label: str) -> Mapping[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Mapping):
        return value
    raise ValidationError(
        f"{label} must be a mapping, got {type(value).__name__}",
        value=value,
    )


def compute_diff(
    original: Any,
    candidate: Any,
    exclude_fields: Iterable[str] = (),
    always_include_fields: Iterable[str] = (),
) -> Diff:
    """
    Return only the fields of ``candidate`` that differ from ``original``.

    Args:
        original: Full prior entity state, or None when there is no prior.
        candidate: Proposed state.  Only its keys are considered.
        exclude_fields: Keys never included (immutable identifiers).
        always_include_fields: Keys included whenever present in ``candidate``,
            regardless of equality.

    Returns:
        A new dict of changed fields.  Values are deep copies; neither input
        is mutated.

    Raises:
        ValidationError: ``original`` is neither None nor a mapping, or
            ``candidate`` is not a mapping.
    """
    updated = _as_mapping(candidate, "candidate")
    prior = None if original is None else _as_mapping(original, "original")

    exclude = set(exclude_fields)
    always_include = set(always_include_fields)
    diff: Diff = {}

    for key, new_value in updated.items():
        if key in exclude:
            continue
        if prior is None or key in always_include:
            diff[key] = deepcopy(new_value)
            continue
        if not values_equal(prior.get(key), new_value):
            diff[key] = deepcopy(new_value)

    return diff


def is_diff_empty(diff: Mapping[str, Any]) -> bool:
    """Check whether a diff carries no changes."""
    return len(diff) == 0


def log_diff(
    label: str,
    original: Any,
    candidate: Any,
    diff: Mapping[str, Any],
) -> None:
    """Debug helper: log diff inputs and the changed field names."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug(f"[diff] {label}: original={original!r}")
    logger.debug(f"[diff] {label}: candidate={candidate!r}")
    logger.debug(f"[diff] {label}: diff={dict(diff)!r} changed={sorted(diff)}")
