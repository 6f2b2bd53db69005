"""Fixed registry of pipeline definitions and the job -> pipeline mapping."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from feed_engine.config import Settings
from feed_engine.exceptions import JobNotFoundError
from feed_engine.pipeline.base import Stage
from feed_engine.pipeline.stages import simulated, stocks

logger = logging.getLogger(__name__)

StageFactory = Callable[[], list[Stage]]


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    description: str
    factory: StageFactory

    def build(self) -> list[Stage]:
        """Fresh stage instances; stages are never shared between runs."""
        return self.factory()


class PipelineRegistry:
    """Enumerable set of pipelines plus the job ids that run them."""

    def __init__(
        self,
        pipelines: Mapping[str, PipelineDefinition],
        jobs: Mapping[int, str],
        default_pipeline: str | None = None,
    ) -> None:
        unknown = {name for name in jobs.values() if name not in pipelines}
        if default_pipeline is not None and default_pipeline not in pipelines:
            unknown.add(default_pipeline)
        if unknown:
            raise ValueError(f"Jobs reference unknown pipelines: {sorted(unknown)}")
        self._pipelines = dict(pipelines)
        self._jobs = dict(jobs)
        self._default = default_pipeline

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineRegistry:
        pipelines = {
            stocks.PIPELINE_NAME: PipelineDefinition(
                name=stocks.PIPELINE_NAME,
                description="Stocks batch feed processing",
                factory=lambda: stocks.build_stocks_pipeline(
                    settings.http_connect_timeout_ms,
                    settings.http_request_timeout_ms,
                ),
            ),
            simulated.PIPELINE_NAME: PipelineDefinition(
                name=simulated.PIPELINE_NAME,
                description="Single simulated stage",
                factory=simulated.build_simulated_pipeline,
            ),
        }
        return cls(pipelines, settings.jobs, settings.default_pipeline)

    @property
    def pipelines(self) -> list[PipelineDefinition]:
        return list(self._pipelines.values())

    @property
    def jobs(self) -> dict[int, str]:
        return dict(self._jobs)

    def pipeline_for_job(self, job_id: int) -> PipelineDefinition:
        """Return the pipeline that runs *job_id*.

        Raises
        ------
        JobNotFoundError
            If the job has no pipeline and no default pipeline is set.
        """
        name = self._jobs.get(job_id, self._default)
        if name is None:
            raise JobNotFoundError(job_id)
        return self._pipelines[name]
