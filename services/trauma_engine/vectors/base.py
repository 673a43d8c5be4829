import logging
from typing import Dict, List, Optional, Tuple

from services.trauma_engine.definitions import TraumaType, VectorName
from services.trauma_engine.loader import CatalogValidationError, default_catalog, validate_vector_catalog
from services.trauma_engine.models import (
    AssessmentItem,
    IncompleteAssessmentError,
    InvalidResponseError,
    VectorCatalog,
    VectorResponse,
    VectorResult,
)
from services.trauma_engine.normalizer import argmax, normalize, tally_responses

logger = logging.getLogger(__name__)


class VectorAssessmentModule:
    """
    Collects one response per catalog item for a single assessment vector and
    reduces them to a normalized affinity distribution.

    Subclasses set ``vector_name`` and implement ``build_response`` (turn a raw
    selection into a catalog-backed VectorResponse) and ``check_catalog``
    (vector-specific option rules, enforced at registration time).
    """

    vector_name: VectorName

    def __init__(self, catalog: Optional[VectorCatalog] = None):
        if catalog is None:
            catalog = default_catalog().for_vector(self.vector_name)
            if catalog is None:
                raise CatalogValidationError(f"No catalog available for vector '{self.vector_name.value}'")
        if catalog.vector != self.vector_name:
            raise CatalogValidationError(
                f"{type(self).__name__} cannot use a catalog for vector '{catalog.vector.value}'"
            )
        validate_vector_catalog(catalog)
        self.check_catalog(catalog)

        self.catalog = catalog
        self.weight = catalog.weight
        self._items: Dict[str, AssessmentItem] = {item.id: item for item in catalog.items}
        self._responses: Dict[str, VectorResponse] = {}

    # --- Hooks ---

    def check_catalog(self, catalog: VectorCatalog) -> None:
        """Vector-specific catalog rules. Raise CatalogValidationError on violation."""
        pass

    def build_response(self, item: AssessmentItem, response: VectorResponse) -> VectorResponse:
        """Re-derives the response's attachments from the catalog entry it names."""
        raise NotImplementedError

    # --- Contract ---

    @property
    def items(self) -> List[AssessmentItem]:
        return list(self.catalog.items)

    @property
    def responses(self) -> Tuple[VectorResponse, ...]:
        """Collected responses in catalog item order."""
        return tuple(self._responses[item.id] for item in self.catalog.items if item.id in self._responses)

    def get_item(self, item_id: str) -> AssessmentItem:
        item = self._items.get(item_id)
        if item is None:
            raise InvalidResponseError(f"Unknown item '{item_id}' for vector '{self.vector_name.value}'")
        return item

    def collect(self, item_id: str, response: VectorResponse) -> VectorResponse:
        """
        Records the response for an item, replacing any earlier answer to it.

        Attachments are always taken from the catalog, never from the caller.

        Raises:
            InvalidResponseError: unknown item, mismatched item id, or a
                selection the item does not offer.
        """
        item = self.get_item(item_id)
        if response.item_id != item_id:
            raise InvalidResponseError(
                f"Response for item '{response.item_id}' submitted under item '{item_id}'"
            )
        resolved = self.build_response(item, response)
        self._responses[item_id] = resolved
        logger.debug(f"[{self.vector_name.value}] Collected response for {item_id}: {len(resolved.attachments)} attachment(s)")
        return resolved

    def collect_payload(self, payload: dict) -> VectorResponse:
        """Parses a bus/HTTP response payload and collects it."""
        try:
            response = VectorResponse.model_validate(payload)
        except ValueError as e:
            raise InvalidResponseError(f"Malformed response payload for vector '{self.vector_name.value}': {e}")
        return self.collect(response.item_id, response)

    def is_complete(self) -> bool:
        return all(item_id in self._responses for item_id in self._items)

    def missing_items(self) -> List[str]:
        return [item.id for item in self.catalog.items if item.id not in self._responses]

    def completion_percentage(self) -> float:
        if not self._items:
            return 0.0
        return len(self._responses) / len(self._items)

    def current_distribution(self) -> Dict[TraumaType, float]:
        return normalize(tally_responses(self.responses))

    def primary_type(self) -> Optional[TraumaType]:
        """Leading category for the responses collected so far, or None."""
        return argmax(self.current_distribution())

    def finalize(self) -> VectorResult:
        """
        Produces the immutable VectorResult for this vector.

        A module with no responses at all yields the all-zero distribution.

        Raises:
            IncompleteAssessmentError: some, but not all, items are answered.
        """
        if self._responses and not self.is_complete():
            raise IncompleteAssessmentError(
                f"Missing responses for vector '{self.vector_name.value}': {self.missing_items()}"
            )
        responses = self.responses
        result = VectorResult(
            vector_name=self.vector_name,
            weight=self.weight,
            distribution=normalize(tally_responses(responses)),
            raw_responses=responses,
        )
        logger.info(f"[{self.vector_name.value}] Finalized with {len(responses)} response(s)")
        return result

    def reset(self) -> None:
        self._responses.clear()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} answered={len(self._responses)}/{len(self._items)}>"
