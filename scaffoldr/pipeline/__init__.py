"""Pipeline orchestration for generation requests."""

from .models import GenerationRequest, GenerationResult, Stage, StageTiming
from .orchestrator import GenerationPipeline, build_pipeline

__all__ = [
    "GenerationPipeline",
    "GenerationRequest",
    "GenerationResult",
    "Stage",
    "StageTiming",
    "build_pipeline",
]
