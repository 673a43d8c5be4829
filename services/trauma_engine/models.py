from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .definitions import TraumaType, VectorName
from .normalizer import empty_distribution, is_distribution, to_serializable


# --- Response payloads ---

class TraumaWeight(BaseModel):
    """One (trauma type, weight) contribution attached to an option."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    trauma_type: TraumaType = Field(..., alias="traumaType")
    weight: float = Field(1.0, ge=0.0)


class VectorResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    item_id: str = Field(..., alias="itemId")
    option_id: Optional[str] = Field(None, alias="optionId")
    selected_option_ids: Tuple[str, ...] = Field((), alias="selectedOptionIds")  # multi-select items
    position: Optional[float] = Field(None, ge=0.0, le=1.0)  # slider items
    attachments: Tuple[TraumaWeight, ...] = ()


# --- Item catalog ---

class ItemKind(str, Enum):
    SINGLE = "single"
    MULTI = "multi"
    SLIDER = "slider"


class AssessmentOption(BaseModel):
    id: str
    label: str = ""
    text: str = ""
    trauma_type: Optional[TraumaType] = None  # single-category options
    affinities: Dict[TraumaType, float] = Field(default_factory=dict)  # fractional options

    @field_validator("affinities")
    @classmethod
    def _non_negative_affinities(cls, value: Dict[TraumaType, float]) -> Dict[TraumaType, float]:
        for trauma_type, weight in value.items():
            if weight < 0:
                raise ValueError(f"Affinity for '{trauma_type.value}' must be non-negative, got {weight}")
        return value

    @property
    def attachments(self) -> Tuple[TraumaWeight, ...]:
        if self.affinities:
            return tuple(TraumaWeight(trauma_type=t, weight=w) for t, w in self.affinities.items())
        if self.trauma_type is not None:
            return (TraumaWeight(trauma_type=self.trauma_type, weight=1.0),)
        return ()


class TraumaMapping(BaseModel):
    position: float = Field(..., ge=0.0, le=1.0)
    trauma_type: TraumaType


class AssessmentItem(BaseModel):
    id: str
    prompt: str
    kind: ItemKind = ItemKind.SINGLE
    options: List[AssessmentOption] = Field(default_factory=list)
    trauma_mappings: List[TraumaMapping] = Field(default_factory=list)

    def option(self, option_id: str) -> Optional[AssessmentOption]:
        return next((o for o in self.options if o.id == option_id), None)


class VectorCatalog(BaseModel):
    vector: VectorName
    weight: float = Field(..., gt=0.0, le=1.0)
    description: str = ""
    items: List[AssessmentItem]


class CatalogConfig(BaseModel):
    version: str
    vectors: List[VectorCatalog]

    def for_vector(self, vector: VectorName) -> Optional[VectorCatalog]:
        return next((c for c in self.vectors if c.vector == vector), None)


# --- Results ---

class VectorResult(BaseModel):
    """Immutable outcome of one vector. ``synthesized`` marks a neutral fallback result."""
    model_config = ConfigDict(frozen=True)

    vector_name: VectorName
    weight: float
    distribution: Dict[TraumaType, float] = Field(default_factory=empty_distribution)
    raw_responses: Tuple[VectorResponse, ...] = ()
    synthesized: bool = False

    @field_validator("distribution")
    @classmethod
    def _check_distribution(cls, value: Dict[TraumaType, float]) -> Dict[TraumaType, float]:
        full = empty_distribution()
        full.update(value)
        if not is_distribution(full):
            raise ValueError("Vector distribution must be all-zero or sum to 1.0")
        return full

    def processed_payload(self) -> Dict[str, float]:
        return to_serializable(self.distribution)


class CoherenceDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    baseline: float = Field(..., ge=0.0, le=1.0)
    focus_score: float
    consistency_score: float
    engagement_score: float

    def response_patterns(self) -> Dict[str, float]:
        return {
            "focusScore": self.focus_score,
            "consistencyScore": self.consistency_score,
            "engagementScore": self.engagement_score,
        }


class PersistedProfile(BaseModel):
    """The externally visible outcome of a completed session."""
    model_config = ConfigDict(frozen=True)

    primary_trauma: TraumaType
    trauma_affinities: Dict[TraumaType, float]
    coherence_baseline: float = Field(..., ge=0.0, le=1.0)
    skipped: bool = False

    @model_validator(mode="after")
    def _check_affinities(self) -> "PersistedProfile":
        if not is_distribution(self.trauma_affinities, allow_partial=True):
            raise ValueError("Trauma affinities violate the distribution invariant")
        return self

    def affinities_payload(self) -> Dict[str, float]:
        return to_serializable(self.trauma_affinities)

    def summary(self) -> Dict[str, Any]:
        return {
            "primaryTrauma": self.primary_trauma.value,
            "traumaAffinities": self.affinities_payload(),
            "coherenceBaseline": self.coherence_baseline,
        }


# Custom Error Classes
class TraumaEngineError(Exception):
    """Base class for every error raised by the trauma engine."""
    pass

class IncompleteAssessmentError(TraumaEngineError, ValueError):
    """A vector was finalized before every required item was answered."""
    pass

class InvalidResponseError(TraumaEngineError, ValueError):
    """A response names an unknown item or option, or does not fit the item kind."""
    pass

class InsufficientDataError(TraumaEngineError):
    """No accepted vector contributed any mass, so no primary type exists."""
    pass

class MissingModuleError(TraumaEngineError):
    """A phase has no registered vector module."""
    pass

class MalformedPersistedStateError(TraumaEngineError):
    """Stored profile data could not be parsed or violates the distribution invariant."""
    pass
