"""
Session orchestration: drives one vector module per phase through
Recognition -> Resonance -> Recursion -> Integration -> Finalized, feeds every
VectorResult to aggregation and coherence calibration, and persists the
resulting profile exactly once.
"""
import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from src.events.bus import EventBus

from .aggregation import AggregationEngine
from .coherence import DEFAULT_BASELINE_RANGE, DEFAULT_JITTER_RANGE, CoherenceCalibrator, RandomSource, SystemRandomSource
from .definitions import (
    DEFAULT_TRAUMA_TYPE,
    PHASE_VECTORS,
    TOPIC_ASSESSMENT_FINALIZED,
    TOPIC_COHERENCE_FINALIZED,
    TOPIC_PHASE_STARTED,
    TOPIC_RITUAL_COMPLETED,
    TOPIC_RITUAL_INITIATED,
    TOPIC_RITUAL_SKIP,
    TOPIC_RITUAL_START,
    TOPIC_VECTOR_PROCESSED,
    TOPIC_VECTOR_RESPONSE,
    VECTOR_PHASES,
    VECTOR_WEIGHTS,
    Phase,
    TraumaType,
    VectorName,
    phase_label,
    utc_timestamp,
)
from .models import (
    IncompleteAssessmentError,
    InvalidResponseError,
    MalformedPersistedStateError,
    MissingModuleError,
    PersistedProfile,
    VectorResponse,
    VectorResult,
)
from .normalizer import empty_distribution, to_serializable
from .profile import build_skip_profile, discard_profile, load_profile, save_profile
from .session_store import SessionStore
from .vectors.base import VectorAssessmentModule

logger = logging.getLogger(__name__)


class AssessmentSession:
    """Mutable state of one session. Owned by exactly one SequencePhaseMachine."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.phase: Optional[Phase] = None  # None until started
        self.results: Dict[VectorName, VectorResult] = {}
        self.accumulated: Dict[TraumaType, float] = empty_distribution()
        self.finalized = False
        self.resumed = False
        self.abandoned = False
        self.profile: Optional[PersistedProfile] = None

    @property
    def started(self) -> bool:
        return self.phase is not None

    @property
    def active_vector(self) -> Optional[VectorName]:
        if self.phase is None:
            return None
        return PHASE_VECTORS.get(self.phase)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "phase": self.phase.slug if self.phase is not None else None,
            "phaseIndex": int(self.phase) if self.phase is not None else None,
            "phaseLabel": phase_label(self.phase) if self.phase is not None else None,
            "completedVectors": [v.value for v in self.results],
            "traumaAffinities": to_serializable(self.accumulated),
            "finalized": self.finalized,
            "resumed": self.resumed,
            "abandoned": self.abandoned,
            "profile": self.profile.summary() if self.profile else None,
        }


class SequencePhaseMachine:
    """
    Orchestrates a single assessment session.

    Collaborators are injected: the SessionStore persists the finished profile,
    the optional EventBus carries lifecycle events and incoming response
    batches, and the RandomSource feeds coherence jitter and skip profiles.
    Instances are single-use; create a new machine per session.
    """

    def __init__(
        self,
        store: SessionStore,
        bus: Optional[EventBus] = None,
        random_source: Optional[RandomSource] = None,
        modules: Optional[Iterable[VectorAssessmentModule]] = None,
        default_trauma_type: TraumaType = DEFAULT_TRAUMA_TYPE,
        auto_advance_missing: bool = True,
        jitter_range=DEFAULT_JITTER_RANGE,
        baseline_range=DEFAULT_BASELINE_RANGE,
        session_id: Optional[str] = None,
    ):
        self.store = store
        self.bus = bus
        self.random_source = random_source or SystemRandomSource()
        self.default_trauma_type = default_trauma_type
        self.auto_advance_missing = auto_advance_missing

        self.session = AssessmentSession(session_id)
        self.aggregation = AggregationEngine()
        self.calibrator = CoherenceCalibrator(
            random_source=self.random_source,
            jitter_range=jitter_range,
            baseline_range=baseline_range,
        )
        self._modules: Dict[VectorName, VectorAssessmentModule] = {}
        self._unsubscribers: List[Callable[[], None]] = []

        for module in modules or ():
            self.register_module(module)

    # --- Modules ---

    def register_module(self, module: VectorAssessmentModule) -> None:
        vector = module.vector_name
        if vector in self.session.results:
            raise InvalidResponseError(f"Vector '{vector.value}' has already completed in this session")
        if vector in self._modules:
            logger.warning(f"Replacing registered module for vector '{vector.value}'")
        self._modules[vector] = module
        logger.debug(f"Registered {module!r} for vector '{vector.value}'")

    def module_for(self, phase: Phase) -> VectorAssessmentModule:
        vector = PHASE_VECTORS.get(phase)
        if vector is None:
            raise MissingModuleError(f"Phase '{phase.slug}' has no assessment vector")
        module = self._modules.get(vector)
        if module is None:
            raise MissingModuleError(f"No module registered for vector '{vector.value}' (phase '{phase.slug}')")
        return module

    @property
    def active_module(self) -> Optional[VectorAssessmentModule]:
        if self.session.phase is None or self.session.finalized:
            return None
        try:
            return self.module_for(self.session.phase)
        except MissingModuleError:
            return None

    @property
    def profile(self) -> Optional[PersistedProfile]:
        return self.session.profile

    @property
    def phase(self) -> Optional[Phase]:
        return self.session.phase

    # --- Bus wiring ---

    def subscribe(self) -> None:
        """Binds the machine's handlers to the bus topics it consumes."""
        if self.bus is None or self._unsubscribers:
            return
        self._unsubscribers = [
            self.bus.subscribe(TOPIC_VECTOR_RESPONSE, self.handle_vector_response),
            self.bus.subscribe(TOPIC_RITUAL_START, self.handle_ritual_start),
            self.bus.subscribe(TOPIC_RITUAL_SKIP, self.handle_ritual_skip),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _log_context(self) -> Dict[str, Any]:
        return {"session_id": self.session.session_id, "phase": self.session.phase}

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.bus is not None:
            self.bus.publish(topic, payload)

    # --- Lifecycle ---

    def start(self) -> AssessmentSession:
        """
        Starts the session, or resumes it from the store.

        A stored profile (initiated flag set) finalizes the session right away
        without running any phase. A corrupt stored profile is discarded and a
        fresh session begins.
        """
        if self.session.started:
            return self.session

        try:
            stored = load_profile(self.store)
        except MalformedPersistedStateError as e:
            logger.error(f"Discarding corrupt persisted profile for session {self.session.session_id}: {e}")
            discard_profile(self.store)
            stored = None

        if stored is not None:
            self.session.phase = Phase.FINALIZED
            self.session.profile = stored
            self.session.accumulated = dict(stored.trauma_affinities)
            self.session.finalized = True
            self.session.resumed = True
            logger.info(f"Session {self.session.session_id} resumed from stored profile ({stored.primary_trauma.value})", extra=self._log_context())
            return self.session

        logger.info(f"Session {self.session.session_id} initiated", extra=self._log_context())
        self._publish(TOPIC_RITUAL_INITIATED, {"sessionId": self.session.session_id, "timestamp": utc_timestamp()})
        self._activate(Phase.RECOGNITION)
        return self.session

    resume = start

    def _activate(self, phase: Phase) -> None:
        self.session.phase = phase
        if phase == Phase.FINALIZED:
            self._finalize()
            return

        logger.info(f"Session {self.session.session_id} entering phase {phase_label(phase)} ({int(phase)})", extra=self._log_context())
        self._publish(TOPIC_PHASE_STARTED, {
            "phase": phase.slug,
            "phaseIndex": int(phase),
            "timestamp": utc_timestamp(),
        })

        try:
            self.module_for(phase)
        except MissingModuleError as e:
            if self.auto_advance_missing:
                logger.warning(f"{e}; substituting a neutral result", extra=self._log_context())
                self._complete(self._synthesize(phase))

    def _synthesize(self, phase: Phase) -> VectorResult:
        vector = PHASE_VECTORS[phase]
        return VectorResult(vector_name=vector, weight=VECTOR_WEIGHTS[vector], synthesized=True)

    def _active_module_or_raise(self) -> VectorAssessmentModule:
        try:
            return self.module_for(self.session.phase)
        except MissingModuleError as e:
            raise InvalidResponseError(f"Phase '{self.session.phase.slug}' cannot collect responses: {e}")

    def _ensure_collecting(self) -> None:
        if not self.session.started:
            raise InvalidResponseError("Session has not been started")
        if self.session.finalized:
            raise InvalidResponseError("Session is already finalized")
        if self.session.abandoned:
            raise InvalidResponseError("Session was abandoned")

    def collect(self, item_id: str, response: VectorResponse) -> VectorResponse:
        """Routes a single response to the module of the current phase."""
        self._ensure_collecting()
        module = self._active_module_or_raise()
        return module.collect(item_id, response)

    def submit_responses(
        self,
        vector: Union[VectorName, str],
        responses: Iterable[Union[VectorResponse, Dict[str, Any]]],
    ) -> Optional[VectorResult]:
        """
        Collects a full response batch for the active vector and completes it.
        Returns None when the batch targets a vector other than the active one.
        """
        self._ensure_collecting()
        vector_name = self._parse_vector(vector)
        if vector_name != self.session.active_vector:
            logger.warning(
                f"Ignoring responses for vector '{vector_name.value}' while phase "
                f"'{self.session.phase.slug}' is active"
            )
            return None

        try:
            module = self.module_for(self.session.phase)
        except MissingModuleError as e:
            logger.warning(f"{e}; completing vector '{vector_name.value}' without collecting responses",
                           extra=self._log_context())
            return self.complete_vector(vector_name)

        for response in responses:
            if isinstance(response, VectorResponse):
                module.collect(response.item_id, response)
            else:
                module.collect_payload(response)
        return self.complete_vector(vector_name)

    def complete_vector(self, vector: Optional[Union[VectorName, str]] = None) -> Optional[VectorResult]:
        """
        Handles a "vector complete" notification.

        Finalizes the active module (or synthesizes a neutral result when it is
        missing), hands the result to aggregation and calibration and advances
        one phase. A notification for any other vector is ignored.

        Raises:
            IncompleteAssessmentError: the active module has unanswered items.
        """
        self._ensure_collecting()
        phase = self.session.phase
        if vector is not None:
            vector_name = self._parse_vector(vector)
            if vector_name != self.session.active_vector:
                logger.warning(
                    f"Ignoring completion of vector '{vector_name.value}' during phase '{phase.slug}'"
                )
                return None

        try:
            module = self.module_for(phase)
        except MissingModuleError as e:
            logger.warning(f"{e}; substituting a neutral result", extra=self._log_context())
            result = self._synthesize(phase)
        else:
            result = module.finalize()

        self._complete(result)
        return result

    def _complete(self, result: VectorResult) -> None:
        self.session.results[result.vector_name] = result
        self.aggregation.accept(result)
        self.calibrator.observe(result)
        self.session.accumulated = self.aggregation.distribution()

        self._publish(TOPIC_VECTOR_PROCESSED, {
            "vector": result.vector_name.value,
            "weight": result.weight,
            "processed": result.processed_payload(),
            "synthesized": result.synthesized,
            "timestamp": utc_timestamp(),
        })
        next_phase = Phase(int(VECTOR_PHASES[result.vector_name]) + 1)
        self._activate(next_phase)

    def finalize(self) -> PersistedProfile:
        """
        Returns the session's profile. Repeated calls return the same profile
        without writing or publishing again.

        Raises:
            IncompleteAssessmentError: the session has not reached Finalized.
        """
        if self.session.finalized:
            return self.session.profile
        if self.session.phase != Phase.FINALIZED:
            current = self.session.phase.slug if self.session.phase is not None else "not started"
            raise IncompleteAssessmentError(f"Session cannot be finalized during phase '{current}'")
        return self._finalize()

    def _finalize(self) -> PersistedProfile:
        if self.session.finalized:
            return self.session.profile

        primary = self.aggregation.primary_type_or_default(self.default_trauma_type)
        distribution = self.aggregation.distribution()
        coherence = self.calibrator.descriptor()
        profile = PersistedProfile(
            primary_trauma=primary,
            trauma_affinities=distribution,
            coherence_baseline=coherence.baseline,
        )

        save_profile(self.store, profile)
        self.session.profile = profile
        self.session.finalized = True
        logger.info(
            f"Session {self.session.session_id} finalized: primary={primary.value} "
            f"baseline={coherence.baseline:.3f}",
            extra=self._log_context(),
        )

        timestamp = utc_timestamp()
        self._publish(TOPIC_ASSESSMENT_FINALIZED, {
            "traumaAffinities": profile.affinities_payload(),
            "primaryTrauma": primary.value,
            "timestamp": timestamp,
        })
        self._publish(TOPIC_COHERENCE_FINALIZED, {
            "coherenceBaseline": coherence.baseline,
            "responsePatterns": coherence.response_patterns(),
            "timestamp": timestamp,
        })
        self._publish(TOPIC_RITUAL_COMPLETED, {
            **profile.summary(),
            "skipped": False,
            "timestamp": timestamp,
        })
        return profile

    def skip(
        self,
        trauma_type: Optional[Union[TraumaType, str]] = None,
        coherence: Optional[float] = None,
    ) -> PersistedProfile:
        """
        Completes the session without assessment using a synthetic profile.

        Raises:
            InvalidResponseError: the session was abandoned.
        """
        if self.session.abandoned:
            raise InvalidResponseError("Session was abandoned")
        if self.session.finalized:
            logger.info(f"Session {self.session.session_id} already finalized; skip ignored")
            return self.session.profile

        profile = build_skip_profile(self.random_source, trauma_type=trauma_type, coherence=coherence)
        for module in self._modules.values():
            module.reset()

        save_profile(self.store, profile)
        self.session.phase = Phase.FINALIZED
        self.session.profile = profile
        self.session.accumulated = dict(profile.trauma_affinities)
        self.session.finalized = True
        logger.info(f"Session {self.session.session_id} skipped with primary trauma '{profile.primary_trauma.value}'", extra=self._log_context())

        self._publish(TOPIC_RITUAL_COMPLETED, {
            **profile.summary(),
            "skipped": True,
            "timestamp": utc_timestamp(),
        })
        return profile

    def abandon(self) -> None:
        """Drops in-memory progress. Nothing is written for an unfinished session."""
        if self.session.finalized:
            return
        for module in self._modules.values():
            module.reset()
        self.session.abandoned = True
        self.close()
        logger.info(f"Session {self.session.session_id} abandoned during phase "
                    f"'{self.session.phase.slug if self.session.phase is not None else 'not started'}'", extra=self._log_context())

    # --- Bus handlers ---

    def handle_vector_response(self, payload: Dict[str, Any]) -> None:
        if self.session.finalized or self.session.abandoned or not self.session.started:
            logger.warning(f"Session {self.session.session_id} is not collecting; ignoring vector response")
            return
        vector = payload.get("vector")
        responses = payload.get("responses") or []
        self.submit_responses(vector, responses)

    def handle_ritual_start(self, payload: Dict[str, Any]) -> None:
        self.start()

    def handle_ritual_skip(self, payload: Dict[str, Any]) -> None:
        payload = payload or {}
        self.skip(trauma_type=payload.get("traumaType"), coherence=payload.get("coherence"))

    @staticmethod
    def _parse_vector(vector: Union[VectorName, str]) -> VectorName:
        try:
            return VectorName(vector)
        except ValueError:
            raise InvalidResponseError(f"Unknown vector '{vector}'")
