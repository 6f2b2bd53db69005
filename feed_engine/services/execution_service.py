"""Top-level "execute a job" entry point.

Resolves the job's pipeline, runs it, and hands the finished tracker to the
history store.  History persistence is a side effect: a failure there is
logged on the run and never changes the run's reported outcome.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from feed_engine.config import Settings
from feed_engine.models.execution import Clock, ExecutionSnapshot, ExecutionStatus, ExecutionTracker
from feed_engine.pipeline.registry import PipelineRegistry
from feed_engine.pipeline.runner import PipelineRunner, failure_reason
from feed_engine.services.history_service import HistoryStore

logger = logging.getLogger(__name__)


class FeedExecutionService:
    """Run pipelines for jobs and record their history.

    Parameters
    ----------
    history:
        Store the finished run is persisted to.
    registry:
        Pipelines and the jobs mapped to them.
    settings:
        Supplies the run deadline and the simulated delay scale.
    clock:
        Time source for trackers (tests inject a fake).
    sleep:
        Blocking wait used by stages.
    """

    def __init__(
        self,
        history: HistoryStore,
        registry: PipelineRegistry,
        settings: Settings,
        *,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._history = history
        self._registry = registry
        self._settings = settings
        self._clock = clock
        self._sleep = sleep

    async def execute(self, job_id: int, raw_parameters: str | None = None) -> ExecutionSnapshot:
        """Run the pipeline for *job_id* and return the resulting snapshot.

        Stage failures, and failures while building the pipeline, are
        reported through the snapshot's status and error, never raised.

        Raises
        ------
        JobNotFoundError
            If no pipeline is registered for *job_id*.  Raised before any
            run starts.
        """
        definition = self._registry.pipeline_for_job(job_id)
        log_extra = {"job_id": job_id}

        tracker = ExecutionTracker(clock=self._clock)
        tracker.log(f"Starting execution of job {job_id} ({definition.name} pipeline)")
        if raw_parameters and raw_parameters.strip():
            tracker.log(f"Parameters: {raw_parameters}")
        else:
            tracker.log("No parameters provided")
        logger.info("Starting %s pipeline for job %d", definition.name, job_id, extra=log_extra)

        try:
            runner = PipelineRunner(
                definition.build(),
                deadline_seconds=self._settings.stage_deadline_seconds,
                delay_scale=self._settings.simulated_delay_scale,
                sleep=self._sleep,
            )
        except Exception as exc:
            reason = failure_reason(exc)
            logger.exception("Failed to build %s pipeline for job %d", definition.name, job_id, extra=log_extra)
            tracker.log(f"ERROR: {reason}")
            tracker.mark_failed(f"Pipeline execution failed: {reason}")
        else:
            # Stages block; keep them off the event loop.
            await asyncio.to_thread(runner.run, tracker, raw_parameters)

        if tracker.status is ExecutionStatus.SUCCESS:
            tracker.log(f"Feed execution completed successfully in {tracker.duration_millis}ms")
            logger.info("Job %d completed in %dms", job_id, tracker.duration_millis, extra=log_extra)
        else:
            tracker.log(f"Feed execution failed: {tracker.error}")
            logger.warning("Job %d failed: %s", job_id, tracker.error, extra=log_extra)

        execution_id: int | None = None
        try:
            execution_id = await self._history.persist(job_id, raw_parameters, tracker)
            tracker.log("Execution history saved to database")
        except Exception as exc:
            logger.warning("Failed to save execution history for job %d", job_id, exc_info=True, extra=log_extra)
            tracker.log(f"WARNING: Failed to save execution history - {exc}")

        return tracker.snapshot(execution_id=execution_id, job_id=job_id)
