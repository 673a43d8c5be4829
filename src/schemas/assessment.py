from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from services.trauma_engine.definitions import TraumaType, VectorName


class SessionCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1, alias="userId")


class ResponseItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(..., alias="itemId")
    option_id: Optional[str] = Field(None, alias="optionId")
    selected_option_ids: List[str] = Field(default_factory=list, alias="selectedOptionIds")
    position: Optional[float] = Field(None, ge=0.0, le=1.0)


class ResponseBatchRequest(BaseModel):
    vector: VectorName
    responses: List[ResponseItem]


class SkipRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    trauma_type: Optional[TraumaType] = Field(None, alias="traumaType")
    coherence: Optional[float] = Field(None, ge=0.0, le=1.0)


class ProfileSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    primary_trauma: TraumaType = Field(..., alias="primaryTrauma")
    trauma_affinities: Dict[str, float] = Field(..., alias="traumaAffinities")
    coherence_baseline: float = Field(..., alias="coherenceBaseline")


class SessionState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    user_id: str = Field(..., alias="userId")
    phase: Optional[str] = None
    phase_index: Optional[int] = Field(None, alias="phaseIndex")
    phase_label: Optional[str] = Field(None, alias="phaseLabel")
    completed_vectors: List[str] = Field(default_factory=list, alias="completedVectors")
    trauma_affinities: Dict[str, float] = Field(default_factory=dict, alias="traumaAffinities")
    finalized: bool = False
    resumed: bool = False
    abandoned: bool = False
    profile: Optional[ProfileSummary] = None


class ProfileResponse(ProfileSummary):
    """Stored profile plus the presentation data derived from it."""
    descriptor: Dict[str, str]
    coherence_level: Dict[str, str] = Field(..., alias="coherenceLevel")
    welcome_narrative: str = Field(..., alias="welcomeNarrative")
