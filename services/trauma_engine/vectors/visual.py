import logging

from services.trauma_engine.definitions import VectorName
from services.trauma_engine.loader import CatalogValidationError
from services.trauma_engine.models import (
    AssessmentItem,
    InvalidResponseError,
    ItemKind,
    VectorCatalog,
    VectorResponse,
)
from services.trauma_engine.vectors.base import VectorAssessmentModule

logger = logging.getLogger(__name__)


class VisualAssessmentModule(VectorAssessmentModule):
    """
    Visual preference assessment (recognition phase, weight 0.4).

    Every option carries fractional affinities for one or more categories;
    the chosen option's affinities are attached to the response unchanged.
    """

    vector_name = VectorName.VISUAL

    def check_catalog(self, catalog: VectorCatalog) -> None:
        for item in catalog.items:
            if item.kind != ItemKind.SINGLE:
                raise CatalogValidationError(f"Visual item '{item.id}' must be single choice, got '{item.kind.value}'")
            for option in item.options:
                if not option.affinities:
                    raise CatalogValidationError(f"Visual option '{option.id}' in item '{item.id}' has no affinities")

    def build_response(self, item: AssessmentItem, response: VectorResponse) -> VectorResponse:
        if response.option_id is None:
            raise InvalidResponseError(f"Visual item '{item.id}' requires an option selection")
        option = item.option(response.option_id)
        if option is None:
            raise InvalidResponseError(f"Unknown option '{response.option_id}' for item '{item.id}'")
        return VectorResponse(item_id=item.id, option_id=option.id, attachments=option.attachments)

    def select(self, item_id: str, option_id: str) -> VectorResponse:
        """Records the option picked for a visual item."""
        return self.collect(item_id, VectorResponse(item_id=item_id, option_id=option_id))
