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


class NarrativeAssessmentModule(VectorAssessmentModule):
    """
    Narrative resonance assessment (resonance phase, weight 0.2).
    Each option names exactly one category and counts once for it.
    """

    vector_name = VectorName.NARRATIVE

    def check_catalog(self, catalog: VectorCatalog) -> None:
        for item in catalog.items:
            if item.kind != ItemKind.SINGLE:
                raise CatalogValidationError(f"Narrative item '{item.id}' must be single choice")
            for option in item.options:
                if option.trauma_type is None or option.affinities:
                    raise CatalogValidationError(
                        f"Narrative option '{option.id}' in item '{item.id}' must name exactly one trauma type"
                    )

    def build_response(self, item: AssessmentItem, response: VectorResponse) -> VectorResponse:
        if response.option_id is None:
            raise InvalidResponseError(f"Narrative item '{item.id}' requires an option selection")
        option = item.option(response.option_id)
        if option is None:
            raise InvalidResponseError(f"Unknown option '{response.option_id}' for item '{item.id}'")
        return VectorResponse(item_id=item.id, option_id=option.id, attachments=option.attachments)

    def select(self, item_id: str, option_id: str) -> VectorResponse:
        return self.collect(item_id, VectorResponse(item_id=item_id, option_id=option_id))
