"""Concrete stage implementations, grouped by pipeline."""

from feed_engine.pipeline.stages.simulated import SimulatedExecutionStage, build_simulated_pipeline
from feed_engine.pipeline.stages.stocks import (
    ConfigurationStage,
    DataProcessingStage,
    DeliveryCheckStage,
    DeliveryNotReadyError,
    FinalizationStage,
    ValidationStage,
    build_stocks_pipeline,
)

__all__ = [
    "ConfigurationStage",
    "DataProcessingStage",
    "DeliveryCheckStage",
    "DeliveryNotReadyError",
    "FinalizationStage",
    "SimulatedExecutionStage",
    "ValidationStage",
    "build_simulated_pipeline",
    "build_stocks_pipeline",
]
