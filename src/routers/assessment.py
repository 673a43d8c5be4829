from fastapi import APIRouter, HTTPException, Depends
from typing import Callable, Dict, Optional
import logging

from src.core.config import TraumaEngineSettings, engine_settings
from src.events.bus import InMemoryEventBus
from src.schemas.assessment import (
    ProfileResponse,
    ResponseBatchRequest,
    SessionCreateRequest,
    SessionState,
    SkipRequest,
)
from services.trauma_engine.coherence import SystemRandomSource, coherence_level
from services.trauma_engine.definitions import trauma_descriptor, welcome_narrative
from services.trauma_engine.loader import load_catalog_from_file
from services.trauma_engine.models import (
    IncompleteAssessmentError,
    InvalidResponseError,
    MalformedPersistedStateError,
)
from services.trauma_engine.profile import discard_profile, load_profile
from services.trauma_engine.sequencer import SequencePhaseMachine
from services.trauma_engine.session_store import InMemorySessionStore, RedisSessionStore, SessionStore, create_redis_client
from services.trauma_engine.vectors import MODULE_CLASSES

router = APIRouter()
logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    In-memory registry of live sessions. Each user gets one SessionStore
    (namespaced by user id); each session gets its own machine, bus and modules.

    Only unfinished sessions are held. A session is released as soon as it is
    finalized; its outcome stays readable through the user's store.
    """

    def __init__(self, settings: TraumaEngineSettings, store_factory: Optional[Callable[[str], SessionStore]] = None):
        self.settings = settings
        self.catalog = load_catalog_from_file(settings.catalog_path)
        self._store_factory = store_factory or self._default_store_factory()
        self._stores: Dict[str, SessionStore] = {}
        self._sessions: Dict[str, SequencePhaseMachine] = {}
        self._owners: Dict[str, str] = {}

        missing = [vector.value for vector in MODULE_CLASSES if self.catalog.for_vector(vector) is None]
        if missing:
            logger.warning(
                f"Catalog {settings.catalog_path} defines no items for {missing}; "
                f"those phases will complete with a neutral result"
            )

    def _default_store_factory(self) -> Callable[[str], SessionStore]:
        if self.settings.store_backend == "redis":
            client = create_redis_client(self.settings.redis_url)
            return lambda user_id: RedisSessionStore(client, key_prefix=f"{self.settings.key_prefix}{user_id}:")
        return lambda user_id: InMemorySessionStore(key_prefix=f"{self.settings.key_prefix}{user_id}:")

    def store_for(self, user_id: str) -> SessionStore:
        if user_id not in self._stores:
            self._stores[user_id] = self._store_factory(user_id)
        return self._stores[user_id]

    def create(self, user_id: str) -> SequencePhaseMachine:
        modules = []
        for vector, module_cls in MODULE_CLASSES.items():
            vector_catalog = self.catalog.for_vector(vector)
            if vector_catalog is not None:
                modules.append(module_cls(vector_catalog))
        machine = SequencePhaseMachine(
            store=self.store_for(user_id),
            bus=InMemoryEventBus(),
            random_source=SystemRandomSource(),
            modules=modules,
            default_trauma_type=self.settings.default_trauma_type,
            auto_advance_missing=self.settings.auto_advance_missing,
            jitter_range=self.settings.jitter_range,
            baseline_range=self.settings.baseline_range,
        )
        machine.subscribe()
        machine.start()
        self._sessions[machine.session.session_id] = machine
        self._owners[machine.session.session_id] = user_id
        return machine

    def get(self, session_id: str) -> Optional[SequencePhaseMachine]:
        return self._sessions.get(session_id)

    def owner(self, session_id: str) -> Optional[str]:
        return self._owners.get(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def release_if_finalized(self, session_id: str) -> bool:
        """Drops a finalized session from the registry. Returns True if it was released."""
        machine = self._sessions.get(session_id)
        if machine is None or not machine.session.finalized:
            return False
        machine.close()
        del self._sessions[session_id]
        self._owners.pop(session_id, None)
        logger.debug(f"Released finalized session {session_id}")
        return True

    def discard(self, session_id: str) -> None:
        machine = self._sessions.pop(session_id, None)
        self._owners.pop(session_id, None)
        if machine is not None:
            machine.abandon()


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry(engine_settings)
    return _registry


def _state(registry: SessionRegistry, machine: SequencePhaseMachine) -> SessionState:
    snapshot = machine.session.snapshot()
    snapshot["userId"] = registry.owner(machine.session.session_id)
    state = SessionState.model_validate(snapshot)
    registry.release_if_finalized(machine.session.session_id)
    return state


def _require_session(registry: SessionRegistry, session_id: str) -> SequencePhaseMachine:
    machine = registry.get(session_id)
    if machine is None:
        raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'")
    return machine


@router.post("/assessment/sessions", response_model=SessionState)
async def create_session(
    request: SessionCreateRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Starts a new session for the user, or resumes the user's completed profile."""
    try:
        machine = registry.create(request.user_id)
        logger.info(f"Session {machine.session.session_id} created for user {request.user_id}")
        return _state(registry, machine)
    except Exception as e:
        logger.exception(f"Unexpected error creating session for user {request.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/assessment/sessions/{session_id}", response_model=SessionState)
async def get_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    machine = _require_session(registry, session_id)
    return _state(registry, machine)


@router.post("/assessment/sessions/{session_id}/responses", response_model=SessionState)
async def submit_responses(
    session_id: str,
    request: ResponseBatchRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Submits a full response batch for one vector. The batch must target the
    vector of the session's current phase; the phase advances on success.
    """
    machine = _require_session(registry, session_id)
    try:
        payloads = [item.model_dump(by_alias=True) for item in request.responses]
        result = machine.submit_responses(request.vector, payloads)
        if result is None:
            active = machine.session.active_vector
            raise InvalidResponseError(
                f"Session is collecting '{active.value if active else 'nothing'}', not '{request.vector.value}'"
            )
        return _state(registry, machine)
    except IncompleteAssessmentError as e:
        logger.error(f"Incomplete assessment: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except InvalidResponseError as e:
        logger.error(f"Invalid response: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error during response submission: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post("/assessment/sessions/{session_id}/skip", response_model=SessionState)
async def skip_session(
    session_id: str,
    request: Optional[SkipRequest] = None,
    registry: SessionRegistry = Depends(get_session_registry),
):
    machine = _require_session(registry, session_id)
    request = request or SkipRequest()
    try:
        machine.skip(trauma_type=request.trauma_type, coherence=request.coherence)
        return _state(registry, machine)
    except InvalidResponseError as e:
        logger.error(f"Invalid skip request: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error while skipping session {session_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.delete("/assessment/sessions/{session_id}", status_code=204)
async def abandon_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    _require_session(registry, session_id)
    registry.discard(session_id)
    logger.info(f"Session {session_id} discarded")


@router.get("/assessment/profile/{user_id}", response_model=ProfileResponse)
async def get_profile(user_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    store = registry.store_for(user_id)
    try:
        profile = load_profile(store)
    except MalformedPersistedStateError as e:
        logger.error(f"Discarding corrupt profile for user {user_id}: {e}")
        discard_profile(store)
        profile = None
    if profile is None:
        raise HTTPException(status_code=404, detail=f"No completed profile for user '{user_id}'")

    return ProfileResponse.model_validate({
        **profile.summary(),
        "descriptor": trauma_descriptor(profile.primary_trauma),
        "coherenceLevel": coherence_level(profile.coherence_baseline),
        "welcomeNarrative": welcome_narrative(profile.primary_trauma),
    })
