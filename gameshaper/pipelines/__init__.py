"""Multi-stage generation pipeline."""

from gameshaper.pipelines.generation import (
    CONTENT_CALL,
    PLANNING_CALL,
    VALIDATION_CALL,
    GenerationPipeline,
)


__all__ = [
    "CONTENT_CALL",
    "GenerationPipeline",
    "PLANNING_CALL",
    "VALIDATION_CALL",
]
