from .errors import (
    GenerationError,
    ParseFailure,
    PipelineCancelled,
    PipelineError,
    ScriptboardError,
    ValidationError,
)
from .pipeline import Pipeline, PipelineConfig, RunState, run_pipeline
from .planning.estimate import DurationPolicy, RatioPolicy
from .utils.types import GenerationUnit, GlobalContext, PipelineResult, SideEntity, UndercountWarning

__all__ = [
    "DurationPolicy",
    "GenerationError",
    "GenerationUnit",
    "GlobalContext",
    "ParseFailure",
    "Pipeline",
    "PipelineCancelled",
    "PipelineConfig",
    "PipelineError",
    "PipelineResult",
    "RatioPolicy",
    "RunState",
    "ScriptboardError",
    "SideEntity",
    "UndercountWarning",
    "ValidationError",
    "run_pipeline",
]
