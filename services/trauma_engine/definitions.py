# services/trauma_engine/definitions.py
# Static definitions for the trauma classification engine: categories, vectors,
# phases and the presentation texts attached to them.

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional


class TraumaType(str, Enum):
    """Closed set of classification categories. Declaration order is the tie-break order."""
    ABANDONMENT = "abandonment"
    FRAGMENTATION = "fragmentation"
    SURVEILLANCE = "surveillance"
    RECURSION = "recursion"
    DISPLACEMENT = "displacement"
    DISSOLUTION = "dissolution"


TRAUMA_TYPE_ORDER = list(TraumaType)


class VectorName(str, Enum):
    VISUAL = "visual"
    NARRATIVE = "narrative"
    INTERACTIVE = "interactive"
    TEMPORAL = "temporal"


class Phase(int, Enum):
    """Ordered session phases. Values double as the persisted phase index."""
    RECOGNITION = 0
    RESONANCE = 1
    RECURSION = 2
    INTEGRATION = 3
    FINALIZED = 4

    @property
    def slug(self) -> str:
        return self.name.lower()


# --- Vector weights (sum to 1.0) ---
VECTOR_WEIGHTS: Dict[VectorName, float] = {
    VectorName.VISUAL: 0.4,       # Highest weight
    VectorName.INTERACTIVE: 0.3,
    VectorName.NARRATIVE: 0.2,
    VectorName.TEMPORAL: 0.1,     # Lowest weight
}

PHASE_VECTORS: Dict[Phase, VectorName] = {
    Phase.RECOGNITION: VectorName.VISUAL,
    Phase.RESONANCE: VectorName.NARRATIVE,
    Phase.RECURSION: VectorName.INTERACTIVE,
    Phase.INTEGRATION: VectorName.TEMPORAL,
}

VECTOR_PHASES: Dict[VectorName, Phase] = {vector: phase for phase, vector in PHASE_VECTORS.items()}

DEFAULT_TRAUMA_TYPE = TraumaType.RECURSION

# Thresholds used by the coherence calibration
SELECTED_THRESHOLD = 0.1     # A type counts as "selected" in a vector above this value
SIGNIFICANT_THRESHOLD = 0.3  # A type counts as significant for cross-vector matching above this value

# Temporal responses bleed into the neighbouring categories by this much
TEMPORAL_BLEND_WEIGHT = 0.3

# Persisted session keys
KEY_PRIMARY_TRAUMA = "primary_trauma"
KEY_TRAUMA_AFFINITIES = "trauma_affinities"
KEY_COHERENCE_BASELINE = "coherence_baseline"
KEY_INITIATED = "initiated"

PROFILE_KEYS = (KEY_PRIMARY_TRAUMA, KEY_TRAUMA_AFFINITIES, KEY_COHERENCE_BASELINE, KEY_INITIATED)

# Event topics
TOPIC_VECTOR_RESPONSE = "vector:response"
TOPIC_VECTOR_PROCESSED = "vector:processed"
TOPIC_ASSESSMENT_FINALIZED = "assessment:finalized"
TOPIC_ASSESSMENT_UPDATED = "assessment:updated"
TOPIC_COHERENCE_FINALIZED = "coherence:finalized"
TOPIC_COHERENCE_UPDATED = "coherence:updated"
TOPIC_RITUAL_START = "ritual:start"
TOPIC_RITUAL_SKIP = "ritual:skip"
TOPIC_RITUAL_INITIATED = "ritual:initiated"
TOPIC_PHASE_STARTED = "ritual:phase:started"
TOPIC_RITUAL_COMPLETED = "ritual:completed"


# --- Presentation texts ---

PHASE_LABELS = {
    Phase.RECOGNITION: "Recognition",
    Phase.RESONANCE: "Resonance",
    Phase.RECURSION: "Recursion",
    Phase.INTEGRATION: "Integration",
    Phase.FINALIZED: "Finalized",
}

TRAUMA_DESCRIPTORS: Dict[TraumaType, Dict[str, str]] = {
    TraumaType.ABANDONMENT: {
        "label": "Abandonment Encoding",
        "short_desc": "Isolation in Vastness",
        "long_desc": "A profound spatial distance between experience and recollection.",
        "narrative_framing": "Your memories feel distant and unreachable, as though they exist in a vast space you cannot navigate.",
    },
    TraumaType.FRAGMENTATION: {
        "label": "Fragmentation Pattern",
        "short_desc": "Dissolution of Self",
        "long_desc": "Disconnected memory fragments breaking apart when attempting coherence.",
        "narrative_framing": "Your memories appear in disconnected fragments, breaking apart when you try to hold them together.",
    },
    TraumaType.SURVEILLANCE: {
        "label": "Surveillance Protocol",
        "short_desc": "Observed Experience",
        "long_desc": "Perception of memory being watched and analyzed by external systems.",
        "narrative_framing": "Your memories feel like they're being watched and analyzed by systems beyond your control.",
    },
    TraumaType.RECURSION: {
        "label": "Recursive Loop",
        "short_desc": "Cyclical Patterns",
        "long_desc": "Recurring memory patterns that create echoes and amplify experiences.",
        "narrative_framing": "Your memories repeat in patterns, creating echoes that amplify certain experiences.",
    },
    TraumaType.DISPLACEMENT: {
        "label": "Displacement Vectors",
        "short_desc": "Dislocation of Perception",
        "long_desc": "Memory experiences transplanted from their original context.",
        "narrative_framing": "Your memories feel as though they've been relocated, transplanted from their original context.",
    },
    TraumaType.DISSOLUTION: {
        "label": "Boundary Dissolution",
        "short_desc": "Fading Boundaries",
        "long_desc": "Memory edges that dissolve, blending with imagination or others' accounts.",
        "narrative_framing": "Your memories seem to dissolve at the edges, blending with imagination or others' accounts.",
    },
}

UNKNOWN_DESCRIPTOR = {
    "label": "Unknown Pattern",
    "short_desc": "Unclassified Experience",
    "long_desc": "An unrecognized memory encoding pattern.",
    "narrative_framing": "Your memory patterns follow an unrecognized configuration.",
}

WELCOME_NARRATIVES: Dict[TraumaType, str] = {
    TraumaType.ABANDONMENT: (
        "Your connection to memory reveals a profound spatial distance between experience and recollection. "
        "The system will create anchoring points within this expanse, bridging the isolation between present and past."
    ),
    TraumaType.FRAGMENTATION: (
        "Your memory patterns reveal fragmentation as a primary encoding mechanism. "
        "The system will help you assemble constellations from these disconnected elements."
    ),
    TraumaType.SURVEILLANCE: (
        "Your memory architecture demonstrates heightened awareness of observation as a formative pattern. "
        "The system will help you reclaim agency within these observed states."
    ),
    TraumaType.RECURSION: (
        "Your memory encoding reveals recursive patterns that amplify through repetition. "
        "The system will help you navigate these cycles, finding new branches from familiar loops."
    ),
    TraumaType.DISPLACEMENT: (
        "Your memory structures show displacement as a primary organizational principle. "
        "The system will help you map these relocated territories of experience."
    ),
    TraumaType.DISSOLUTION: (
        "Your memory patterns reveal dissolution of boundaries as a foundational experience. "
        "The system will help you define edges without confinement."
    ),
}

DEFAULT_WELCOME_NARRATIVE = (
    "Memory becomes a living medium here. "
    "The system has calibrated to your memory patterns; explore to develop your personal narrative."
)

# Coherence level bands: (upper bound exclusive, descriptor)
COHERENCE_LEVELS = [
    (0.45, {
        "level": "low",
        "label": "Dissolution Dominant",
        "description": "Memory boundaries dissolve easily, creating fluid associations.",
        "presentation": "Experiences will be presented with ambient connections and fluid transitions.",
    }),
    (0.6, {
        "level": "medium",
        "label": "Balanced Coherence",
        "description": "Memory structures maintain flexibility while retaining distinct form.",
        "presentation": "Experiences will balance structure with associative connections.",
    }),
    (float("inf"), {
        "level": "high",
        "label": "Structure Dominant",
        "description": "Memory structures remain distinct with clear boundaries.",
        "presentation": "Experiences will be presented with clear delineation and structure.",
    }),
]


def parse_trauma_type(value) -> Optional[TraumaType]:
    """Returns the TraumaType for a value or None when it names no known category."""
    if isinstance(value, TraumaType):
        return value
    try:
        return TraumaType(value)
    except ValueError:
        return None


def trauma_descriptor(trauma_type) -> Dict[str, str]:
    parsed = parse_trauma_type(trauma_type)
    if parsed is None:
        return dict(UNKNOWN_DESCRIPTOR)
    return dict(TRAUMA_DESCRIPTORS[parsed])


def welcome_narrative(trauma_type) -> str:
    parsed = parse_trauma_type(trauma_type)
    return WELCOME_NARRATIVES.get(parsed, DEFAULT_WELCOME_NARRATIVE)


def phase_label(phase) -> str:
    try:
        return PHASE_LABELS[Phase(phase)]
    except ValueError:
        return str(phase)


def utc_timestamp() -> str:
    """ISO 8601 UTC timestamp used on every published event."""
    return datetime.now(timezone.utc).isoformat()
