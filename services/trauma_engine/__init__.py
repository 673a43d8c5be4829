from .aggregation import AggregationEngine
from .coherence import CoherenceCalibrator, FixedRandomSource, SystemRandomSource
from .definitions import Phase, TraumaType, VectorName
from .models import (
    IncompleteAssessmentError,
    InsufficientDataError,
    InvalidResponseError,
    MalformedPersistedStateError,
    MissingModuleError,
    PersistedProfile,
    TraumaEngineError,
    VectorResponse,
    VectorResult,
)
from .sequencer import AssessmentSession, SequencePhaseMachine
from .session_store import InMemorySessionStore, RedisSessionStore
