"""Stage interface, parameter resolution and the sequential runner."""

from feed_engine.pipeline.base import BaseStage, Deadline, Stage, StageContext
from feed_engine.pipeline.parameters import ParameterResolver, ResolvedParameters
from feed_engine.pipeline.registry import PipelineDefinition, PipelineRegistry
from feed_engine.pipeline.runner import PipelineRunner

__all__ = [
    "BaseStage",
    "Deadline",
    "ParameterResolver",
    "PipelineDefinition",
    "PipelineRegistry",
    "PipelineRunner",
    "ResolvedParameters",
    "Stage",
    "StageContext",
]
