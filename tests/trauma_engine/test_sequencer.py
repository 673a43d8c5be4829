import logging

import pytest

from services.trauma_engine.coherence import FixedRandomSource
from services.trauma_engine.definitions import (
    KEY_INITIATED,
    KEY_TRAUMA_AFFINITIES,
    TOPIC_ASSESSMENT_FINALIZED,
    TOPIC_COHERENCE_FINALIZED,
    TOPIC_PHASE_STARTED,
    TOPIC_RITUAL_COMPLETED,
    TOPIC_RITUAL_INITIATED,
    TOPIC_RITUAL_SKIP,
    TOPIC_RITUAL_START,
    TOPIC_VECTOR_PROCESSED,
    TOPIC_VECTOR_RESPONSE,
    Phase,
    TraumaType,
    VectorName,
)
from services.trauma_engine.models import (
    IncompleteAssessmentError,
    InvalidResponseError,
    MissingModuleError,
    PersistedProfile,
    VectorResponse,
)
from services.trauma_engine.profile import save_profile
from services.trauma_engine.sequencer import SequencePhaseMachine
from services.trauma_engine.vectors import (
    InteractiveAssessmentModule,
    NarrativeAssessmentModule,
    TemporalAssessmentModule,
    VisualAssessmentModule,
)

VISUAL_BATCH = [
    {"itemId": "visual-01", "optionId": "v01-opt2"},
    {"itemId": "visual-02", "optionId": "v02-opt4"},
    {"itemId": "visual-03", "optionId": "v03-opt3"},
    {"itemId": "visual-04", "optionId": "v04-opt1"},
    {"itemId": "visual-05", "optionId": "v05-opt4"},
]
NARRATIVE_BATCH = [
    {"itemId": "narrative-01", "optionId": "n01-opt2"},
    {"itemId": "narrative-02", "optionId": "n02-opt4"},
    {"itemId": "narrative-03", "optionId": "n03-opt1"},
    {"itemId": "narrative-04", "optionId": "n04-opt2"},
]
INTERACTIVE_BATCH = [
    {"itemId": "interactive-01", "selectedOptionIds": ["i01-opt2", "i01-opt4"]},
    {"itemId": "interactive-02", "selectedOptionIds": []},
    {"itemId": "interactive-03", "selectedOptionIds": ["i03-opt1"]},
]
TEMPORAL_BATCH = [
    {"itemId": "temporal-01", "position": 0.8},
    {"itemId": "temporal-02", "optionId": "t02-branching"},
    {"itemId": "temporal-03", "optionId": "t03-fragmenting"},
]
BATCHES = [
    (VectorName.VISUAL, VISUAL_BATCH),
    (VectorName.NARRATIVE, NARRATIVE_BATCH),
    (VectorName.INTERACTIVE, INTERACTIVE_BATCH),
    (VectorName.TEMPORAL, TEMPORAL_BATCH),
]


def all_modules(catalog):
    return [
        VisualAssessmentModule(catalog.for_vector(VectorName.VISUAL)),
        NarrativeAssessmentModule(catalog.for_vector(VectorName.NARRATIVE)),
        InteractiveAssessmentModule(catalog.for_vector(VectorName.INTERACTIVE)),
        TemporalAssessmentModule(catalog.for_vector(VectorName.TEMPORAL)),
    ]


@pytest.fixture
def machine(catalog, store, bus, fixed_random):
    return SequencePhaseMachine(store, bus=bus, random_source=fixed_random, modules=all_modules(catalog))


def run_all(machine):
    for vector, batch in BATCHES:
        machine.submit_responses(vector, batch)


def test_fresh_start_enters_recognition(machine, bus):
    machine.start()
    assert machine.phase == Phase.RECOGNITION
    assert machine.active_module.vector_name == VectorName.VISUAL
    assert len(bus.messages(TOPIC_RITUAL_INITIATED)) == 1
    assert bus.messages(TOPIC_PHASE_STARTED)[0]["phaseIndex"] == 0


def test_start_twice_is_a_no_op(machine, bus):
    machine.start()
    machine.start()
    assert len(bus.messages(TOPIC_RITUAL_INITIATED)) == 1


def test_full_session_finalizes_once(machine, store, bus):
    machine.start()
    run_all(machine)

    assert machine.phase == Phase.FINALIZED
    assert machine.session.finalized
    profile = machine.profile
    assert profile.primary_trauma == TraumaType.FRAGMENTATION
    assert sum(profile.trauma_affinities.values()) == pytest.approx(1.0)
    assert 0.35 <= profile.coherence_baseline <= 0.85

    phases = [m["phase"] for m in bus.messages(TOPIC_PHASE_STARTED)]
    assert phases == ["recognition", "resonance", "recursion", "integration"]
    assert [m["vector"] for m in bus.messages(TOPIC_VECTOR_PROCESSED)] == ["visual", "narrative", "interactive", "temporal"]
    assert len(bus.messages(TOPIC_ASSESSMENT_FINALIZED)) == 1
    assert len(bus.messages(TOPIC_COHERENCE_FINALIZED)) == 1
    assert bus.messages(TOPIC_RITUAL_COMPLETED)[0]["skipped"] is False

    assert store.get(KEY_INITIATED) is True
    assert store.get(KEY_TRAUMA_AFFINITIES) == profile.affinities_payload()


def test_finalize_is_idempotent(machine, store, bus):
    machine.start()
    run_all(machine)
    stored = dict(store.data)
    first = machine.profile

    assert machine.finalize() is first
    assert machine.finalize() is first
    assert store.data == stored
    assert len(bus.messages(TOPIC_ASSESSMENT_FINALIZED)) == 1
    assert len(bus.messages(TOPIC_RITUAL_COMPLETED)) == 1


def test_finalize_before_last_phase_raises(machine, store):
    machine.start()
    machine.submit_responses(VectorName.VISUAL, VISUAL_BATCH)
    with pytest.raises(IncompleteAssessmentError):
        machine.finalize()
    assert store.get(KEY_INITIATED) is None


def test_identical_runs_are_reproducible(catalog):
    from services.trauma_engine.session_store import InMemorySessionStore

    profiles = []
    for _ in range(2):
        machine = SequencePhaseMachine(
            InMemorySessionStore(),
            random_source=FixedRandomSource([0.25]),
            modules=all_modules(catalog),
        )
        machine.start()
        run_all(machine)
        profiles.append(machine.profile)
    assert profiles[0] == profiles[1]


def test_partial_batch_raises_and_keeps_phase(machine):
    machine.start()
    with pytest.raises(IncompleteAssessmentError):
        machine.submit_responses(VectorName.VISUAL, VISUAL_BATCH[:2])
    assert machine.phase == Phase.RECOGNITION


def test_out_of_phase_notification_is_ignored(machine, caplog):
    machine.start()
    with caplog.at_level(logging.WARNING):
        assert machine.complete_vector(VectorName.NARRATIVE) is None
        assert machine.submit_responses("narrative", NARRATIVE_BATCH) is None
    assert machine.phase == Phase.RECOGNITION
    assert "Ignoring" in caplog.text


def test_collect_routes_to_active_module(machine):
    machine.start()
    machine.collect("visual-01", VectorResponse(item_id="visual-01", option_id="v01-opt1"))
    assert machine.active_module.completion_percentage() == pytest.approx(0.2)
    with pytest.raises(InvalidResponseError):
        machine.collect("narrative-01", VectorResponse(item_id="narrative-01", option_id="n01-opt1"))


def test_collect_before_start_raises(machine):
    with pytest.raises(InvalidResponseError, match="not been started"):
        machine.collect("visual-01", VectorResponse(item_id="visual-01", option_id="v01-opt1"))


def test_missing_modules_are_synthesized(catalog, store, bus, fixed_random):
    visual = VisualAssessmentModule(catalog.for_vector(VectorName.VISUAL))
    machine = SequencePhaseMachine(store, bus=bus, random_source=fixed_random, modules=[visual])
    machine.start()
    machine.submit_responses(VectorName.VISUAL, VISUAL_BATCH)

    assert machine.phase == Phase.FINALIZED
    synthesized = [r for r in machine.session.results.values() if r.synthesized]
    assert {r.vector_name for r in synthesized} == {VectorName.NARRATIVE, VectorName.INTERACTIVE, VectorName.TEMPORAL}
    assert all(sum(r.distribution.values()) == 0.0 for r in synthesized)
    assert machine.aggregation.weight_sum == pytest.approx(1.0)
    assert machine.profile.primary_trauma == TraumaType.FRAGMENTATION


def test_no_modules_finalizes_with_default_type(store, bus, fixed_random, caplog):
    machine = SequencePhaseMachine(store, bus=bus, random_source=fixed_random)
    with caplog.at_level(logging.WARNING):
        machine.start()
    assert machine.session.finalized
    assert machine.profile.primary_trauma == TraumaType.RECURSION
    assert all(v == 0.0 for v in machine.profile.trauma_affinities.values())
    assert "Applying default trauma type" in caplog.text


def test_manual_fallback_when_auto_advance_disabled(catalog, store, fixed_random):
    visual = VisualAssessmentModule(catalog.for_vector(VectorName.VISUAL))
    machine = SequencePhaseMachine(store, random_source=fixed_random, modules=[visual], auto_advance_missing=False)
    machine.start()
    machine.submit_responses(VectorName.VISUAL, VISUAL_BATCH)
    assert machine.phase == Phase.RESONANCE
    with pytest.raises(MissingModuleError):
        machine.module_for(Phase.RESONANCE)

    result = machine.complete_vector()
    assert result.synthesized
    assert machine.phase == Phase.RECURSION
    machine.complete_vector(VectorName.INTERACTIVE)
    machine.complete_vector(VectorName.TEMPORAL)
    assert machine.session.finalized


def test_zero_response_module_finalizes_neutral(machine):
    machine.start()
    result = machine.complete_vector(VectorName.VISUAL)
    assert not result.synthesized
    assert all(v == 0.0 for v in result.distribution.values())
    assert machine.phase == Phase.RESONANCE


def test_resume_from_stored_profile(catalog, store, bus, fixed_random):
    saved = PersistedProfile(
        primary_trauma=TraumaType.DISPLACEMENT,
        trauma_affinities={TraumaType.DISPLACEMENT: 1.0},
        coherence_baseline=0.5,
    )
    save_profile(store, saved)
    machine = SequencePhaseMachine(store, bus=bus, random_source=fixed_random, modules=all_modules(catalog))
    machine.start()

    assert machine.session.resumed
    assert machine.phase == Phase.FINALIZED
    assert machine.profile.primary_trauma == TraumaType.DISPLACEMENT
    assert bus.messages(TOPIC_RITUAL_INITIATED) == []
    assert bus.messages(TOPIC_ASSESSMENT_FINALIZED) == []
    assert machine.finalize() is machine.profile


def test_corrupt_stored_profile_is_discarded(machine, store, bus, caplog):
    store.set(KEY_INITIATED, True)
    store.set("primary_trauma", "fragmentation")
    store.data[KEY_TRAUMA_AFFINITIES] = "{broken"
    store.set("coherence_baseline", 0.5)

    with caplog.at_level(logging.ERROR):
        machine.start()
    assert "Discarding corrupt persisted profile" in caplog.text
    assert machine.phase == Phase.RECOGNITION
    assert not machine.session.resumed
    assert len(store) == 0
    assert len(bus.messages(TOPIC_RITUAL_INITIATED)) == 1


def test_skip_completes_without_assessment(machine, store, bus):
    machine.start()
    profile = machine.skip(trauma_type="surveillance", coherence=0.7)
    assert profile.primary_trauma == TraumaType.SURVEILLANCE
    assert profile.coherence_baseline == 0.7
    assert machine.session.finalized
    assert store.get("primary_trauma") == "surveillance"
    [completed] = bus.messages(TOPIC_RITUAL_COMPLETED)
    assert completed["skipped"] is True
    assert bus.messages(TOPIC_ASSESSMENT_FINALIZED) == []

    assert machine.skip(trauma_type="abandonment") is profile
    assert len(bus.messages(TOPIC_RITUAL_COMPLETED)) == 1


def test_skip_after_finalize_does_nothing(machine, bus):
    machine.start()
    run_all(machine)
    profile = machine.profile
    assert machine.skip() is profile
    assert len(bus.messages(TOPIC_RITUAL_COMPLETED)) == 1


def test_abandon_writes_nothing(machine, store):
    machine.start()
    machine.submit_responses(VectorName.VISUAL, VISUAL_BATCH)
    machine.abandon()
    assert machine.session.abandoned
    assert len(store) == 0
    with pytest.raises(InvalidResponseError, match="abandoned"):
        machine.submit_responses(VectorName.NARRATIVE, NARRATIVE_BATCH)


def test_bus_driven_session(machine, bus):
    machine.subscribe()
    bus.publish(TOPIC_RITUAL_START, {})
    for vector, batch in BATCHES:
        bus.publish(TOPIC_VECTOR_RESPONSE, {"vector": vector.value, "responses": batch})
    assert machine.session.finalized
    assert bus.dead_letters == []


def test_bus_handler_errors_become_dead_letters(machine, bus):
    machine.subscribe()
    bus.publish(TOPIC_RITUAL_START, {})
    bus.publish(TOPIC_VECTOR_RESPONSE, {"vector": "visual", "responses": VISUAL_BATCH[:1]})
    assert machine.phase == Phase.RECOGNITION
    [letter] = bus.dead_letters
    assert letter.topic == TOPIC_VECTOR_RESPONSE
    assert isinstance(letter.error, IncompleteAssessmentError)


def test_bus_skip(machine, bus):
    machine.subscribe()
    bus.publish(TOPIC_RITUAL_SKIP, {"traumaType": "abandonment"})
    assert machine.profile.primary_trauma == TraumaType.ABANDONMENT


def test_close_unsubscribes(machine, bus):
    machine.subscribe()
    machine.close()
    bus.publish(TOPIC_RITUAL_START, {})
    assert not machine.session.started


def test_snapshot(machine):
    machine.start()
    machine.submit_responses(VectorName.VISUAL, VISUAL_BATCH)
    snapshot = machine.session.snapshot()
    assert snapshot["phase"] == "resonance"
    assert snapshot["phaseIndex"] == 1
    assert snapshot["completedVectors"] == ["visual"]
    assert snapshot["traumaAffinities"]["fragmentation"] == pytest.approx(3.1 / 4.6)
    assert snapshot["profile"] is None


def test_missing_module_batch_completes_phase_over_bus(catalog, store, bus, fixed_random, caplog):
    visual = VisualAssessmentModule(catalog.for_vector(VectorName.VISUAL))
    machine = SequencePhaseMachine(store, bus=bus, random_source=fixed_random, modules=[visual], auto_advance_missing=False)
    machine.subscribe()
    bus.publish(TOPIC_RITUAL_START, {})
    bus.publish(TOPIC_VECTOR_RESPONSE, {"vector": "visual", "responses": VISUAL_BATCH})
    assert machine.phase == Phase.RESONANCE

    with caplog.at_level(logging.WARNING):
        bus.publish(TOPIC_VECTOR_RESPONSE, {"vector": "narrative", "responses": []})
    assert machine.phase == Phase.RECURSION
    assert machine.session.results[VectorName.NARRATIVE].synthesized
    assert "without collecting responses" in caplog.text

    bus.publish(TOPIC_VECTOR_RESPONSE, {"vector": "interactive", "responses": []})
    bus.publish(TOPIC_VECTOR_RESPONSE, {"vector": "temporal", "responses": []})
    assert bus.dead_letters == []
    assert machine.session.finalized
    assert store.get(KEY_INITIATED) is True


def test_skip_after_abandon_is_rejected(machine, store):
    machine.start()
    machine.abandon()
    with pytest.raises(InvalidResponseError, match="abandoned"):
        machine.skip(trauma_type="recursion")
    assert len(store) == 0
    assert machine.profile is None
