"""Read-only success-rate and duration statistics over persisted executions."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from feed_engine.models.history import ExecutionStats, StageStats
from feed_engine.state.database import get_session
from feed_engine.state.repository import ExecutionRepository, StageRepository

logger = logging.getLogger(__name__)


class StatsAggregator:
    """Computes per-job statistics from the history tables.

    A job with no executions yields zero counts, a 0.0 success rate and no
    average duration rather than an error.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def stats_for(self, job_id: int) -> ExecutionStats:
        async with get_session(self._engine) as session:
            raw = await ExecutionRepository(session).get_job_stats(job_id)

        total = raw["total"]
        successful = raw["successful"]
        success_rate = successful * 100.0 / total if total else 0.0
        return ExecutionStats(
            job_id=job_id,
            total=total,
            successful=successful,
            failed=raw["failed"],
            average_duration_millis=raw["avg_duration_millis"],
            success_rate=success_rate,
        )

    async def stage_stats_for(self, job_id: int) -> list[StageStats]:
        """Per-stage-name statistics, in pipeline order."""
        async with get_session(self._engine) as session:
            rows = await StageRepository(session).get_stage_stats(job_id)
        return [
            StageStats(
                name=row["name"],
                runs=row["runs"],
                failures=row["failures"],
                average_duration_millis=row["avg_duration_millis"],
            )
            for row in rows
        ]
