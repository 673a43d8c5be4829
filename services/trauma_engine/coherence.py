"""
Coherence calibration: how focused, consistent and engaged a user's answers
were across vectors, folded into a bounded baseline.
"""
import copy
import logging
import random
from itertools import combinations
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .definitions import (
    COHERENCE_LEVELS,
    SELECTED_THRESHOLD,
    SIGNIFICANT_THRESHOLD,
    TRAUMA_TYPE_ORDER,
    VectorName,
    utc_timestamp,
)
from .models import CoherenceDescriptor, VectorResult

logger = logging.getLogger(__name__)

# Sub-score weights in the baseline
FOCUS_WEIGHT = 0.4
CONSISTENCY_WEIGHT = 0.4
ENGAGEMENT_WEIGHT = 0.2

BASELINE_OFFSET = 0.4
BASELINE_SCALE = 0.4

FOCUS_FLOOR = 0.2
ENGAGEMENT_FLOOR = 0.3
NEUTRAL_SCORE = 0.5  # used for any sub-score with no data behind it

DEFAULT_JITTER_RANGE = (0.05, 0.10)
DEFAULT_BASELINE_RANGE = (0.35, 0.85)


# --- Random sources ---

class RandomSource(Protocol):
    def next_float(self, minimum: float, maximum: float) -> float:
        ...


class SystemRandomSource:
    """Uniform floats from ``random.Random``; pass a seed for reproducible runs."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def next_float(self, minimum: float, maximum: float) -> float:
        return self._rng.uniform(minimum, maximum)


class FixedRandomSource:
    """
    Replays a fixed sequence of unit values in [0, 1], scaled into the requested
    range. The sequence repeats once exhausted.
    """

    def __init__(self, values: Sequence[float] = (0.5,)):
        if not values:
            raise ValueError("FixedRandomSource needs at least one value")
        for value in values:
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"FixedRandomSource values must be within [0, 1], got {value}")
        self._values = list(values)
        self._index = 0

    def next_float(self, minimum: float, maximum: float) -> float:
        unit = self._values[self._index % len(self._values)]
        self._index += 1
        return minimum + (maximum - minimum) * unit


# --- Sub-scores ---

def focus_score(distributions: Sequence[Mapping]) -> float:
    if not distributions:
        return NEUTRAL_SCORE
    total_types = len(TRAUMA_TYPE_ORDER)
    scores = []
    for distribution in distributions:
        selected = sum(1 for t in TRAUMA_TYPE_ORDER if distribution.get(t, 0.0) > SELECTED_THRESHOLD)
        scores.append(max(FOCUS_FLOOR, 1.0 - selected / total_types))
    return sum(scores) / len(scores)


def consistency_score(distributions: Sequence[Mapping]) -> float:
    if len(distributions) < 2:
        return NEUTRAL_SCORE
    pair_scores = []
    for first, second in combinations(distributions, 2):
        matches = 0
        candidates = 0
        for trauma_type in TRAUMA_TYPE_ORDER:
            a = first.get(trauma_type, 0.0)
            b = second.get(trauma_type, 0.0)
            if a <= SELECTED_THRESHOLD and b <= SELECTED_THRESHOLD:
                continue
            if a > SIGNIFICANT_THRESHOLD and b > SIGNIFICANT_THRESHOLD:
                matches += 1
            if a > SIGNIFICANT_THRESHOLD or b > SIGNIFICANT_THRESHOLD:
                candidates += 1
        pair_scores.append(matches / candidates if candidates else 0.0)
    return sum(pair_scores) / len(pair_scores)


def engagement_score(distributions: Sequence[Mapping]) -> float:
    if not distributions:
        return NEUTRAL_SCORE
    values = [v for d in distributions for v in d.values() if v > 0]
    if not values:
        return ENGAGEMENT_FLOOR
    return max(ENGAGEMENT_FLOOR, sum(values) / len(values))


class CoherenceCalibrator:
    """
    Observes VectorResults (in any order) and derives a CoherenceDescriptor.

    The descriptor is recomputed on every call and draws fresh jitter from the
    injected RandomSource, so a fixed source gives reproducible baselines.
    """

    def __init__(
        self,
        random_source: Optional[RandomSource] = None,
        jitter_range=DEFAULT_JITTER_RANGE,
        baseline_range=DEFAULT_BASELINE_RANGE,
    ):
        self.random_source = random_source or SystemRandomSource()
        self.jitter_min, self.jitter_max = jitter_range
        self.baseline_min, self.baseline_max = baseline_range
        if self.jitter_min > self.jitter_max or self.baseline_min > self.baseline_max:
            raise ValueError("Jitter and baseline ranges must be ordered (min <= max)")
        self._observed: Dict[VectorName, VectorResult] = {}

    @classmethod
    def from_results(cls, results: Iterable[VectorResult], **kwargs) -> "CoherenceCalibrator":
        calibrator = cls(**kwargs)
        for result in results:
            calibrator.observe(result)
        return calibrator

    @property
    def observed_vectors(self) -> List[VectorName]:
        return list(self._observed.keys())

    def observe(self, result: VectorResult) -> None:
        if result.vector_name in self._observed:
            logger.warning(f"Vector '{result.vector_name.value}' already observed for coherence; ignoring.")
            return
        self._observed[result.vector_name] = result

    def _distributions(self) -> List[Mapping]:
        return [result.distribution for result in self._observed.values()]

    def sub_scores(self) -> Dict[str, float]:
        distributions = self._distributions()
        return {
            "focus": focus_score(distributions),
            "consistency": consistency_score(distributions),
            "engagement": engagement_score(distributions),
        }

    def descriptor(self) -> CoherenceDescriptor:
        scores = self.sub_scores()
        weighted = (
            FOCUS_WEIGHT * scores["focus"]
            + CONSISTENCY_WEIGHT * scores["consistency"]
            + ENGAGEMENT_WEIGHT * scores["engagement"]
        )
        jitter = self.random_source.next_float(self.jitter_min, self.jitter_max)
        baseline = BASELINE_OFFSET + BASELINE_SCALE * weighted + jitter
        baseline = max(self.baseline_min, min(self.baseline_max, baseline))
        logger.debug(
            f"Coherence: focus={scores['focus']:.3f} consistency={scores['consistency']:.3f} "
            f"engagement={scores['engagement']:.3f} jitter={jitter:.3f} -> baseline={baseline:.3f}"
        )
        return CoherenceDescriptor(
            baseline=baseline,
            focus_score=scores["focus"],
            consistency_score=scores["consistency"],
            engagement_score=scores["engagement"],
        )

    def reset(self) -> None:
        self._observed.clear()


# --- Presentation ---

def coherence_level(baseline: float) -> Dict[str, str]:
    """Low / medium / high presentation descriptor for a baseline."""
    for upper_bound, descriptor in COHERENCE_LEVELS:
        if baseline < upper_bound:
            return dict(descriptor)
    return dict(COHERENCE_LEVELS[-1][1])


def modulate_content(content: Optional[Dict[str, Any]], baseline: float) -> Optional[Dict[str, Any]]:
    """Deep copy of ``content`` tagged with the coherence level it should be presented at."""
    if not content:
        return content
    modulated = copy.deepcopy(content)
    modulated["coherenceMetadata"] = {
        "baselineApplied": baseline,
        "descriptor": coherence_level(baseline),
        "modulated": True,
        "timestamp": utc_timestamp(),
    }
    return modulated
