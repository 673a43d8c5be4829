from .base import VectorAssessmentModule
from .interactive import InteractiveAssessmentModule
from .narrative import NarrativeAssessmentModule
from .temporal import TemporalAssessmentModule
from .visual import VisualAssessmentModule

MODULE_CLASSES = {
    module_cls.vector_name: module_cls
    for module_cls in (
        VisualAssessmentModule,
        NarrativeAssessmentModule,
        InteractiveAssessmentModule,
        TemporalAssessmentModule,
    )
}


def default_modules():
    """One freshly constructed module per vector, backed by the packaged catalog."""
    return [module_cls() for module_cls in MODULE_CLASSES.values()]
