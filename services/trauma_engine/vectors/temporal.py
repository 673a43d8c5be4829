import logging
from typing import Optional, Tuple

from services.trauma_engine.definitions import TEMPORAL_BLEND_WEIGHT, TRAUMA_TYPE_ORDER, TraumaType, VectorName
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

logger = logging.getLogger(__name__)


def nearest_mapping(item: AssessmentItem, position: float) -> TraumaType:
    """Trauma type of the mapping closest to ``position``. The first mapping wins ties."""
    best = item.trauma_mappings[0]
    best_distance = abs(best.position - position)
    for mapping in item.trauma_mappings[1:]:
        distance = abs(mapping.position - position)
        if distance < best_distance:
            best = mapping
            best_distance = distance
    return best.trauma_type


def blended_attachments(trauma_type: TraumaType) -> Tuple[TraumaWeight, ...]:
    """1.0 for the type itself plus the blend weight for each neighbour in enumeration order."""
    index = TRAUMA_TYPE_ORDER.index(trauma_type)
    attachments = [TraumaWeight(trauma_type=trauma_type, weight=1.0)]
    if index > 0:
        attachments.append(TraumaWeight(trauma_type=TRAUMA_TYPE_ORDER[index - 1], weight=TEMPORAL_BLEND_WEIGHT))
    if index < len(TRAUMA_TYPE_ORDER) - 1:
        attachments.append(TraumaWeight(trauma_type=TRAUMA_TYPE_ORDER[index + 1], weight=TEMPORAL_BLEND_WEIGHT))
    return tuple(attachments)


class TemporalAssessmentModule(VectorAssessmentModule):
    """
    Temporal perception assessment (integration phase, weight 0.1).

    Mixes single-choice items with slider items. A slider answer is either a
    position, resolved through the item's trauma mappings, or one of its
    labelled options. Typed slider answers bleed into neighbouring categories.
    """

    vector_name = VectorName.TEMPORAL

    def check_catalog(self, catalog: VectorCatalog) -> None:
        for item in catalog.items:
            if item.kind == ItemKind.MULTI:
                raise CatalogValidationError(f"Temporal item '{item.id}' cannot be multi-select")

    def build_response(self, item: AssessmentItem, response: VectorResponse) -> VectorResponse:
        if item.kind == ItemKind.SLIDER and response.position is not None:
            trauma_type = nearest_mapping(item, response.position)
            logger.debug(f"[temporal] Slider {item.id} at {response.position:.2f} -> {trauma_type.value}")
            return VectorResponse(
                item_id=item.id,
                position=response.position,
                attachments=blended_attachments(trauma_type),
            )

        if response.option_id is None:
            raise InvalidResponseError(f"Temporal item '{item.id}' requires an option or slider position")
        option = item.option(response.option_id)
        if option is None:
            raise InvalidResponseError(f"Unknown option '{response.option_id}' for item '{item.id}'")

        if option.trauma_type is None:
            attachments: Tuple[TraumaWeight, ...] = ()
        elif item.kind == ItemKind.SLIDER:
            attachments = blended_attachments(option.trauma_type)
        else:
            attachments = (TraumaWeight(trauma_type=option.trauma_type, weight=1.0),)
        return VectorResponse(item_id=item.id, option_id=option.id, attachments=attachments)

    def select(self, item_id: str, option_id: str) -> VectorResponse:
        return self.collect(item_id, VectorResponse(item_id=item_id, option_id=option_id))

    def set_position(self, item_id: str, position: float) -> VectorResponse:
        """Records a slider position in [0, 1] for a slider item."""
        item = self.get_item(item_id)
        if item.kind != ItemKind.SLIDER:
            raise InvalidResponseError(f"Item '{item_id}' is not a slider")
        if not 0.0 <= position <= 1.0:
            raise InvalidResponseError(f"Slider position must be within [0, 1], got {position}")
        return self.collect(item_id, VectorResponse(item_id=item_id, position=position))

    def slider_type(self, item_id: str) -> Optional[TraumaType]:
        """Trauma type the current slider answer resolves to, if any."""
        response = self._responses.get(item_id)
        if response is None or not response.attachments:
            return None
        return response.attachments[0].trauma_type
