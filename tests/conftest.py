import pytest

from services.trauma_engine.coherence import FixedRandomSource
from services.trauma_engine.definitions import VECTOR_WEIGHTS, VectorName
from services.trauma_engine.loader import load_catalog_from_file
from services.trauma_engine.models import VectorResult
from services.trauma_engine.session_store import InMemorySessionStore
from src.events.bus import InMemoryEventBus


@pytest.fixture(scope="session")
def catalog():
    """The packaged item catalog, parsed once for the whole test session."""
    return load_catalog_from_file()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
def fixed_random():
    # Jitter always lands on the lower bound of its range
    return FixedRandomSource([0.0])


def make_result(vector: VectorName, distribution=None, **kwargs) -> VectorResult:
    """Builds a VectorResult with the vector's declared weight."""
    return VectorResult(
        vector_name=vector,
        weight=VECTOR_WEIGHTS[vector],
        distribution=distribution or {},
        **kwargs,
    )


@pytest.fixture
def result_factory():
    return make_result
