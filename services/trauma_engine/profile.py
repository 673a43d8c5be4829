"""
Reading and writing the persisted profile, plus the operations that produce
or adjust a profile outside the phase machine (skip, manual overrides) and
the content matching that consumes it.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from src.events.bus import EventBus

from .definitions import (
    DEFAULT_TRAUMA_TYPE,
    KEY_COHERENCE_BASELINE,
    KEY_INITIATED,
    KEY_PRIMARY_TRAUMA,
    KEY_TRAUMA_AFFINITIES,
    PROFILE_KEYS,
    TOPIC_ASSESSMENT_UPDATED,
    TOPIC_COHERENCE_UPDATED,
    TRAUMA_TYPE_ORDER,
    TraumaType,
    parse_trauma_type,
    utc_timestamp,
)
from .models import InvalidResponseError, MalformedPersistedStateError, PersistedProfile
from .normalizer import argmax, coerce_distribution, normalize, to_serializable
from .session_store import SessionStore

logger = logging.getLogger(__name__)

SKIP_PRIMARY_AFFINITY = 0.7
SKIP_SECONDARY_MAX = 0.3
SKIP_DEFAULT_COHERENCE = 0.5
NEUTRAL_MATCH_SCORE = 0.5


def save_profile(store: SessionStore, profile: PersistedProfile) -> None:
    """Writes the three value keys, then the initiated flag that marks them complete."""
    store.set(KEY_PRIMARY_TRAUMA, profile.primary_trauma.value)
    store.set(KEY_TRAUMA_AFFINITIES, profile.affinities_payload())
    store.set(KEY_COHERENCE_BASELINE, profile.coherence_baseline)
    store.set(KEY_INITIATED, True)
    logger.info(f"Persisted profile: primary={profile.primary_trauma.value} baseline={profile.coherence_baseline:.3f}")


def load_profile(store: SessionStore) -> Optional[PersistedProfile]:
    """
    Returns the stored profile, or None when no session has been finalized.

    Raises:
        MalformedPersistedStateError: the initiated flag is set but the stored
            values are missing, unparseable, or violate the distribution invariant.
    """
    if store.get(KEY_INITIATED) is not True:
        return None

    primary_raw = store.get(KEY_PRIMARY_TRAUMA)
    affinities_raw = store.get(KEY_TRAUMA_AFFINITIES)
    baseline_raw = store.get(KEY_COHERENCE_BASELINE)

    primary = parse_trauma_type(primary_raw)
    if primary is None:
        raise MalformedPersistedStateError(f"Stored primary trauma {primary_raw!r} is not a known trauma type")
    try:
        affinities = coerce_distribution(affinities_raw)
    except ValueError as e:
        raise MalformedPersistedStateError(f"Stored trauma affinities are invalid: {e}")
    if isinstance(baseline_raw, bool) or not isinstance(baseline_raw, (int, float)):
        raise MalformedPersistedStateError(f"Stored coherence baseline {baseline_raw!r} is not a number")

    try:
        return PersistedProfile(
            primary_trauma=primary,
            trauma_affinities=affinities,
            coherence_baseline=float(baseline_raw),
        )
    except ValidationError as e:
        raise MalformedPersistedStateError(f"Stored profile failed validation: {e}")


def discard_profile(store: SessionStore) -> None:
    for key in PROFILE_KEYS:
        store.delete(key)
    logger.debug("Discarded persisted profile keys")


def build_skip_profile(
    random_source,
    trauma_type: Optional[Union[TraumaType, str]] = None,
    coherence: Optional[float] = None,
) -> PersistedProfile:
    """
    Profile for a session completed without assessment: the chosen type gets
    0.7, every other type a random share in [0, 0.3], normalized.
    """
    primary = DEFAULT_TRAUMA_TYPE
    if trauma_type is not None:
        primary = parse_trauma_type(trauma_type)
        if primary is None:
            raise InvalidResponseError(f"Unknown trauma type '{trauma_type}'")
    baseline = SKIP_DEFAULT_COHERENCE if coherence is None else coherence
    if not 0.0 <= baseline <= 1.0:
        raise InvalidResponseError(f"Coherence must be within [0, 1], got {baseline}")

    raw = {}
    for t in TRAUMA_TYPE_ORDER:
        raw[t] = SKIP_PRIMARY_AFFINITY if t == primary else random_source.next_float(0.0, SKIP_SECONDARY_MAX)

    return PersistedProfile(
        primary_trauma=primary,
        trauma_affinities=normalize(raw),
        coherence_baseline=baseline,
        skipped=True,
    )


def set_trauma_affinities(
    store: SessionStore,
    affinities: Mapping[Any, Any],
    bus: Optional[EventBus] = None,
) -> TraumaType:
    """
    Manually replaces the stored affinities. The mapping is normalized and
    its arg-max becomes the stored primary trauma, which is returned.
    """
    try:
        distribution = normalize(coerce_distribution(affinities))
    except ValueError as e:
        raise InvalidResponseError(f"Invalid trauma affinities: {e}")
    primary = argmax(distribution)
    if primary is None:
        raise InvalidResponseError("Trauma affinities carry no mass")

    store.set(KEY_TRAUMA_AFFINITIES, to_serializable(distribution))
    store.set(KEY_PRIMARY_TRAUMA, primary.value)
    logger.info(f"Trauma affinities manually set. Primary trauma: {primary.value}")

    if bus is not None:
        bus.publish(TOPIC_ASSESSMENT_UPDATED, {
            "traumaAffinities": to_serializable(distribution),
            "primaryTrauma": primary.value,
            "manual": True,
            "timestamp": utc_timestamp(),
        })
    return primary


def set_coherence_baseline(store: SessionStore, value: Any, bus: Optional[EventBus] = None) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        logger.error(f"Invalid coherence baseline {value!r}. Must be a number between 0 and 1.")
        return False

    store.set(KEY_COHERENCE_BASELINE, float(value))
    logger.info(f"Coherence baseline manually set to {value}")
    if bus is not None:
        bus.publish(TOPIC_COHERENCE_UPDATED, {
            "coherenceBaseline": float(value),
            "manual": True,
            "timestamp": utc_timestamp(),
        })
    return True


def trauma_match_score(
    affinities: Optional[Union[PersistedProfile, Mapping[Any, float]]],
    content_types: Optional[Mapping[str, float]],
) -> float:
    """
    How well content tagged with per-type intensities matches a profile:
    the intensity-weighted mean of the user's affinities. 0.5 when either
    side is empty or nothing overlaps.
    """
    if isinstance(affinities, PersistedProfile):
        affinities = affinities.trauma_affinities
    if not affinities or not content_types:
        return NEUTRAL_MATCH_SCORE

    known: Dict[TraumaType, float] = {}
    for key, value in affinities.items():
        trauma_type = parse_trauma_type(key)
        if trauma_type is not None:
            known[trauma_type] = float(value)

    total_score = 0.0
    total_weight = 0.0
    for key, intensity in content_types.items():
        trauma_type = parse_trauma_type(key)
        if trauma_type is None or trauma_type not in known:
            continue
        total_score += known[trauma_type] * intensity
        total_weight += intensity

    if total_weight == 0:
        return NEUTRAL_MATCH_SCORE
    return total_score / total_weight
