"""Single-stage pipeline for jobs without dedicated stage logic."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from feed_engine.pipeline.base import BaseStage, StageContext

PIPELINE_NAME = "simulated"


class SimulatedExecutionStage(BaseStage):
    name = "Simulated Execution"
    description = "Simulate feed execution for jobs without a dedicated pipeline"
    DEFAULTS = MappingProxyType({"durationMillis": "1000"})

    def execute(self, params: Mapping[str, str], ctx: StageContext) -> None:
        duration = self.int_param(params, "durationMillis")
        ctx.log(f"Simulating feed execution for {duration}ms")
        ctx.sleep(duration)
        ctx.log("Simulated execution finished")


def build_simulated_pipeline() -> list[BaseStage]:
    return [SimulatedExecutionStage()]
