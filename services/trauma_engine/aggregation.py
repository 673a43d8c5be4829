"""
Cross-vector aggregation of per-vector affinity distributions.
"""
import logging
from typing import Dict, Iterable, List, Optional

from .definitions import DEFAULT_TRAUMA_TYPE, TRAUMA_TYPE_ORDER, TraumaType, VectorName
from .models import InsufficientDataError, VectorResult
from .normalizer import argmax, empty_distribution

logger = logging.getLogger(__name__)


class AggregationEngine:
    """
    Weighted mean of the distributions of every accepted vector.

    Each accepted VectorResult adds ``distribution[type] * weight`` to a running
    accumulator. ``distribution()`` divides the accumulator by the sum of the
    weights actually accepted, so vectors that never ran do not dilute the
    result while vectors that ran but came back empty still count.
    """

    def __init__(self):
        self._accumulator: Dict[TraumaType, float] = empty_distribution()
        self._weight_sum: float = 0.0
        self._results: Dict[VectorName, VectorResult] = {}

    @classmethod
    def from_results(cls, results: Iterable[VectorResult]) -> "AggregationEngine":
        """Rebuilds an engine by replaying VectorResults."""
        engine = cls()
        for result in results:
            engine.accept(result)
        return engine

    @property
    def weight_sum(self) -> float:
        return self._weight_sum

    @property
    def results(self) -> List[VectorResult]:
        return list(self._results.values())

    def has_vector(self, vector_name: VectorName) -> bool:
        return vector_name in self._results

    def accept(self, result: VectorResult) -> None:
        if result.vector_name in self._results:
            logger.warning(f"Vector '{result.vector_name.value}' already aggregated; ignoring repeated result.")
            return
        self._results[result.vector_name] = result
        for trauma_type in TRAUMA_TYPE_ORDER:
            self._accumulator[trauma_type] += result.distribution.get(trauma_type, 0.0) * result.weight
        self._weight_sum += result.weight
        logger.debug(
            f"Aggregated vector '{result.vector_name.value}' (weight {result.weight}); accepted weight sum now {self._weight_sum:.2f}"
        )

    def distribution(self) -> Dict[TraumaType, float]:
        if self._weight_sum <= 0.0:
            return empty_distribution()
        return {trauma_type: value / self._weight_sum for trauma_type, value in self._accumulator.items()}

    def primary_type(self) -> TraumaType:
        """
        Arg-max of the aggregated distribution; ties go to the earliest category
        in enumeration order.

        Raises:
            InsufficientDataError: nothing accepted so far carries any mass.
        """
        primary = argmax(self.distribution())
        if primary is None:
            raise InsufficientDataError(
                f"No affinity mass accumulated across {len(self._results)} accepted vector(s)"
            )
        return primary

    def primary_type_or_default(self, default: Optional[TraumaType] = None) -> TraumaType:
        """primary_type(), falling back to ``default`` (recursion unless given) when there is no data."""
        fallback = default or DEFAULT_TRAUMA_TYPE
        try:
            return self.primary_type()
        except InsufficientDataError as e:
            logger.warning(f"{e}. Applying default trauma type '{fallback.value}'.")
            return fallback

    def reset(self) -> None:
        self._accumulator = empty_distribution()
        self._weight_sum = 0.0
        self._results.clear()
