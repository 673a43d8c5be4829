import math

import pytest

from services.trauma_engine.definitions import TRAUMA_TYPE_ORDER, TraumaType
from services.trauma_engine.models import TraumaWeight, VectorResponse
from services.trauma_engine.normalizer import (
    argmax,
    coerce_distribution,
    empty_distribution,
    is_distribution,
    normalize,
    tally_responses,
    to_serializable,
)


def test_empty_distribution_covers_every_type_in_order():
    dist = empty_distribution()
    assert list(dist.keys()) == TRAUMA_TYPE_ORDER
    assert all(v == 0.0 for v in dist.values())


def test_normalize_divides_by_total_mass():
    raw = {TraumaType.FRAGMENTATION: 3.0, TraumaType.RECURSION: 1.0}
    dist = normalize(raw)
    assert dist[TraumaType.FRAGMENTATION] == pytest.approx(0.75)
    assert dist[TraumaType.RECURSION] == pytest.approx(0.25)
    assert sum(dist.values()) == pytest.approx(1.0)


def test_normalize_all_zero_stays_zero():
    dist = normalize(empty_distribution())
    assert all(v == 0.0 for v in dist.values())
    assert len(dist) == 6


def test_tally_skips_responses_without_attachments():
    responses = [
        VectorResponse(item_id="a", option_id="x", attachments=(
            TraumaWeight(trauma_type=TraumaType.SURVEILLANCE, weight=0.8),
            TraumaWeight(trauma_type=TraumaType.DISPLACEMENT, weight=0.1),
        )),
        VectorResponse(item_id="b", option_id="neutral"),
        VectorResponse(item_id="c", option_id="y", attachments=(
            TraumaWeight(trauma_type=TraumaType.SURVEILLANCE, weight=0.2),
        )),
    ]
    raw = tally_responses(responses)
    assert raw[TraumaType.SURVEILLANCE] == pytest.approx(1.0)
    assert raw[TraumaType.DISPLACEMENT] == pytest.approx(0.1)
    assert raw[TraumaType.ABANDONMENT] == 0.0


def test_argmax_prefers_earliest_type_on_ties():
    dist = {TraumaType.DISSOLUTION: 0.5, TraumaType.SURVEILLANCE: 0.5}
    assert argmax(dist) == TraumaType.SURVEILLANCE


def test_argmax_of_empty_distribution_is_none():
    assert argmax(empty_distribution()) is None


@pytest.mark.parametrize("values, partial, expected", [
    ({TraumaType.RECURSION: 1.0}, False, True),
    ({TraumaType.RECURSION: 0.6}, False, False),
    ({TraumaType.RECURSION: 0.6}, True, True),
    ({TraumaType.RECURSION: 1.2}, True, False),
    ({TraumaType.RECURSION: -0.1, TraumaType.ABANDONMENT: 1.1}, False, False),
    ({TraumaType.RECURSION: math.nan}, False, False),
    ({}, False, True),
])
def test_is_distribution(values, partial, expected):
    assert is_distribution(values, allow_partial=partial) is expected


def test_coerce_distribution_accepts_names_and_fills_missing():
    dist = coerce_distribution({"recursion": 0.25, "abandonment": 0.75})
    assert dist[TraumaType.RECURSION] == 0.25
    assert dist[TraumaType.DISSOLUTION] == 0.0
    assert len(dist) == 6


def test_coerce_distribution_rejects_unknown_types_and_non_numbers():
    with pytest.raises(ValueError, match="Unknown trauma type"):
        coerce_distribution({"nostalgia": 1.0})
    with pytest.raises(ValueError, match="must be numeric"):
        coerce_distribution({"recursion": "lots"})
    with pytest.raises(ValueError):
        coerce_distribution(["recursion"])


def test_to_serializable_uses_string_keys():
    payload = to_serializable({TraumaType.RECURSION: 1.0})
    assert payload == {"recursion": 1.0}
