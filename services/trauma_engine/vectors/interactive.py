from typing import Iterable, List

from services.trauma_engine.definitions import VectorName
from services.trauma_engine.loader import CatalogValidationError
from services.trauma_engine.models import (
    AssessmentItem,
    InvalidResponseError,
    ItemKind,
    TraumaWeight,
    VectorCatalog,
    VectorResponse,
)
from services.trauma_engine.vectors.base import VectorAssessmentModule


class InteractiveAssessmentModule(VectorAssessmentModule):
    """
    Interaction pattern assessment (recursion phase, weight 0.3).

    Items are multi-select: every selected option adds 1.0 to its category.
    Submitting an empty selection still answers the item.
    """

    vector_name = VectorName.INTERACTIVE

    def check_catalog(self, catalog: VectorCatalog) -> None:
        for item in catalog.items:
            if item.kind != ItemKind.MULTI:
                raise CatalogValidationError(f"Interactive item '{item.id}' must be multi-select")
            for option in item.options:
                if option.trauma_type is None:
                    raise CatalogValidationError(
                        f"Interactive option '{option.id}' in item '{item.id}' must name a trauma type"
                    )

    def build_response(self, item: AssessmentItem, response: VectorResponse) -> VectorResponse:
        selected = list(response.selected_option_ids)
        # A single option_id is accepted as a one-element selection
        if not selected and response.option_id is not None:
            selected = [response.option_id]

        attachments: List[TraumaWeight] = []
        seen = set()
        for option_id in selected:
            if option_id in seen:
                continue
            seen.add(option_id)
            option = item.option(option_id)
            if option is None:
                raise InvalidResponseError(f"Unknown option '{option_id}' for item '{item.id}'")
            attachments.append(TraumaWeight(trauma_type=option.trauma_type, weight=1.0))

        ordered = tuple(o.id for o in item.options if o.id in seen)
        return VectorResponse(item_id=item.id, selected_option_ids=ordered, attachments=tuple(attachments))

    def select(self, item_id: str, option_ids: Iterable[str]) -> VectorResponse:
        """Records the full set of options selected for an item."""
        return self.collect(item_id, VectorResponse(item_id=item_id, selected_option_ids=tuple(option_ids)))

    def toggle(self, item_id: str, option_id: str) -> VectorResponse:
        """Adds the option to the item's selection, or removes it if already selected."""
        current = self._responses.get(item_id)
        selection = list(current.selected_option_ids) if current else []
        if option_id in selection:
            selection.remove(option_id)
        else:
            selection.append(option_id)
        return self.select(item_id, selection)
