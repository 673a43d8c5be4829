# services/trauma_engine/normalizer.py
# Shared helpers that turn raw per-type tallies into affinity distributions.

import math
from typing import Any, Dict, Iterable, Mapping, Optional

from .definitions import TRAUMA_TYPE_ORDER, TraumaType, parse_trauma_type

# Sum of a non-empty distribution must land within this tolerance of 1.0
DISTRIBUTION_TOLERANCE = 1e-9


def empty_distribution() -> Dict[TraumaType, float]:
    """All six categories at zero, in enumeration order."""
    return {trauma_type: 0.0 for trauma_type in TRAUMA_TYPE_ORDER}


def tally_responses(responses: Iterable[Any]) -> Dict[TraumaType, float]:
    """
    Sums the weighted attachments of every response per trauma type.

    Responses are anything exposing an ``attachments`` sequence of
    ``(trauma_type, weight)`` carriers. A response without attachments adds nothing.
    """
    raw = empty_distribution()
    for response in responses:
        for attachment in getattr(response, "attachments", ()) or ():
            raw[attachment.trauma_type] += attachment.weight
    return raw


def normalize(raw: Mapping[TraumaType, float]) -> Dict[TraumaType, float]:
    """
    Divides every tally by the total mass so the result sums to 1.0.

    When the largest tally is zero the all-zero distribution is returned
    instead of dividing.
    """
    result = empty_distribution()
    values = [float(raw.get(trauma_type, 0.0)) for trauma_type in TRAUMA_TYPE_ORDER]
    if max(values) <= 0.0:
        return result
    total = sum(values)
    for trauma_type, value in zip(TRAUMA_TYPE_ORDER, values):
        result[trauma_type] = value / total
    return result


def distribution_total(distribution: Mapping[TraumaType, float]) -> float:
    return sum(float(v) for v in distribution.values())


def is_distribution(distribution: Mapping[TraumaType, float], allow_partial: bool = False) -> bool:
    """
    Checks the distribution invariant: non-negative finite values that are all
    zero or sum to 1.0. ``allow_partial`` accepts any total up to 1.0, which is
    what a weighted mean over partly-empty vectors produces.
    """
    for value in distribution.values():
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return False
        if math.isnan(value) or math.isinf(value) or value < 0:
            return False
    total = distribution_total(distribution)
    if total == 0:
        return True
    if allow_partial:
        return total <= 1.0 + DISTRIBUTION_TOLERANCE
    return abs(total - 1.0) <= DISTRIBUTION_TOLERANCE


def coerce_distribution(mapping: Mapping[Any, Any]) -> Dict[TraumaType, float]:
    """
    Parses a mapping keyed by trauma type names (or members) into a full distribution.
    Missing categories are filled with zero.

    Raises:
        ValueError: on unknown category names or non-numeric values.
    """
    if not isinstance(mapping, Mapping):
        raise ValueError(f"Expected a mapping of trauma types, got {type(mapping).__name__}")
    result = empty_distribution()
    for key, value in mapping.items():
        trauma_type = parse_trauma_type(key)
        if trauma_type is None:
            raise ValueError(f"Unknown trauma type '{key}'")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Affinity for '{key}' must be numeric, got {value!r}")
        result[trauma_type] = float(value)
    return result


def argmax(distribution: Mapping[TraumaType, float]) -> Optional[TraumaType]:
    """
    Highest-valued category; equal maxima resolve to the earliest in enumeration
    order. Returns None when nothing carries mass.
    """
    best_type = None
    best_value = 0.0
    for trauma_type in TRAUMA_TYPE_ORDER:
        value = distribution.get(trauma_type, 0.0)
        if value > best_value:  # strict: earlier types keep ties
            best_type = trauma_type
            best_value = value
    return best_type


def to_serializable(distribution: Mapping[TraumaType, float]) -> Dict[str, float]:
    """JSON-friendly copy keyed by category name."""
    return {TraumaType(k).value: float(v) for k, v in distribution.items()}
