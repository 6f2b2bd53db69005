"""Persist execution trackers and answer history queries.

Every public method opens its own session through :func:`get_session`, so
each call is a single transaction: :meth:`HistoryStore.persist` writes an
execution with all of its stages and logs or nothing at all, and
:meth:`HistoryStore.purge_older_than` deletes every matching execution or
none.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import UTC, date, datetime, time
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from feed_engine.exceptions import ExecutionNotFoundError, InvalidQueryError, PersistenceError
from feed_engine.models.execution import ExecutionStatus, ExecutionTracker
from feed_engine.models.history import (
    ExecutionDetail,
    ExecutionSummary,
    LogDetail,
    LogLevel,
    StageDetail,
)
from feed_engine.state.database import get_session
from feed_engine.state.repository import ExecutionRepository, LogRepository, StageRepository

logger = logging.getLogger(__name__)

_ERROR_MARKERS = ("error", "failed", "exception")
_WARN_MARKERS = ("warn",)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def determine_log_level(message: str) -> LogLevel:
    """Derive a severity from log text."""
    lowered = message.lower()
    if any(marker in lowered for marker in _ERROR_MARKERS):
        return LogLevel.ERROR
    if any(marker in lowered for marker in _WARN_MARKERS):
        return LogLevel.WARN
    return LogLevel.INFO


def encode_parameters(parameters: Mapping[str, Any]) -> str | None:
    """Encode a stage parameter map as JSON.

    Falls back to ``str()`` when the map is not JSON-serialisable.  The
    fallback is for diagnostics only and is not meant to be parsed back.
    """
    if not parameters:
        return None
    try:
        return json.dumps(dict(parameters), sort_keys=True)
    except (TypeError, ValueError) as exc:
        logger.warning("Stage parameters are not JSON-serialisable, storing text form: %s", exc)
        return str(dict(parameters))


def parse_status(value: str) -> ExecutionStatus:
    """Parse a caller-supplied execution status (case-insensitive)."""
    try:
        return ExecutionStatus(value.strip().upper())
    except ValueError as exc:
        allowed = ", ".join(s.value for s in ExecutionStatus)
        raise InvalidQueryError(f"Invalid status '{value}'; expected one of: {allowed}") from exc


def parse_timestamp(value: str, *, end_of_day: bool = False) -> datetime:
    """Parse an ISO-8601 date or datetime into an aware UTC datetime.

    A bare date becomes midnight, or the last microsecond of the day when
    *end_of_day* is set, so date-only windows stay inclusive.
    """
    text = value.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            parsed = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise InvalidQueryError(f"Invalid date '{value}': expected ISO-8601 date or datetime") from exc

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _build_log_rows(execution_id: int, tracker: ExecutionTracker, stage_ids: list[int]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = [
        {
            "execution_id": execution_id,
            "stage_id": None,
            "message": entry.message,
            "timestamp": entry.timestamp,
            "log_level": determine_log_level(entry.message).value,
        }
        for entry in tracker.logs
    ]
    for stage, stage_id in zip(tracker.stages, stage_ids, strict=True):
        rows.extend(
            {
                "execution_id": execution_id,
                "stage_id": stage_id,
                "message": entry.message,
                "timestamp": entry.timestamp,
                "log_level": determine_log_level(entry.message).value,
            }
            for entry in stage.logs
        )
    return rows


# ---------------------------------------------------------------------------
# History store
# ---------------------------------------------------------------------------


class HistoryStore:
    """Durable, queryable record of executions, stages, and logs.

    Parameters
    ----------
    engine:
        Async engine for the history database.  Tables must exist
        (see :func:`feed_engine.state.database.create_tables`).
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def persist(self, job_id: int, raw_parameters: str | None, tracker: ExecutionTracker) -> int:
        """Write *tracker* as one execution with its stages and logs.

        Execution-stream lines are stored with execution linkage only;
        stage lines carry both the execution and the stage id.

        Returns
        -------
        int
            The new execution id.

        Raises
        ------
        PersistenceError
            If any write fails.  Nothing is committed in that case.
        """
        try:
            async with get_session(self._engine) as session:
                executions = ExecutionRepository(session)
                stages = StageRepository(session)
                logs = LogRepository(session)

                execution = await executions.create(
                    {
                        "job_id": job_id,
                        "status": tracker.status.value,
                        "start_time": tracker.start_time,
                        "end_time": tracker.end_time,
                        "parameters": raw_parameters or None,
                        "error": tracker.error,
                        "duration_millis": tracker.duration_millis if tracker.end_time else None,
                    }
                )

                stage_ids: list[int] = []
                for order, stage in enumerate(tracker.stages, start=1):
                    row = await stages.create(
                        execution.id,
                        {
                            "name": stage.name,
                            "description": stage.description or None,
                            "status": stage.status.value,
                            "start_time": stage.start_time,
                            "end_time": stage.end_time,
                            "parameters": encode_parameters(stage.parameters),
                            "error": stage.error,
                            "duration_millis": stage.duration_millis if stage.end_time else None,
                            "stage_order": order,
                        },
                    )
                    stage_ids.append(row.id)

                log_count = await logs.add_many(_build_log_rows(execution.id, tracker, stage_ids))
                execution_id = execution.id
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to persist execution for job {job_id}: {exc}") from exc

        logger.info(
            "Persisted execution %d for job %d (%d stages, %d log lines)",
            execution_id,
            job_id,
            len(stage_ids),
            log_count,
            extra={"job_id": job_id, "execution_id": execution_id},
        )
        return execution_id

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete executions started before *cutoff* with their stages and logs.

        Raises
        ------
        PersistenceError
            If any delete fails; the whole purge is rolled back.
        """
        try:
            async with get_session(self._engine) as session:
                executions = ExecutionRepository(session)
                ids = await executions.ids_started_before(cutoff)
                if not ids:
                    return 0
                await LogRepository(session).delete_for_executions(ids)
                await StageRepository(session).delete_for_executions(ids)
                deleted = await executions.delete_by_ids(ids)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to purge executions before {cutoff.isoformat()}: {exc}") from exc

        logger.info("Purged %d executions started before %s", deleted, cutoff.isoformat())
        return deleted

    # ------------------------------------------------------------------
    # Execution queries
    # ------------------------------------------------------------------

    async def list_for_job(self, job_id: int, limit: int | None = None, offset: int = 0) -> list[ExecutionSummary]:
        """Executions for *job_id*, newest first, optionally paginated."""
        if limit is not None and limit < 1:
            raise InvalidQueryError(f"limit must be positive, got {limit}")
        if offset < 0:
            raise InvalidQueryError(f"offset must not be negative, got {offset}")
        return await self.list_filtered(job_id, limit=limit, offset=offset)

    async def list_by_status(self, status: ExecutionStatus, job_id: int | None = None) -> list[ExecutionSummary]:
        return await self._query(job_id=job_id, status=status.value)

    async def list_by_date_range(self, job_id: int, start: datetime, end: datetime) -> list[ExecutionSummary]:
        """Executions for *job_id* started within ``[start, end]``, newest first."""
        if start > end:
            raise InvalidQueryError("Start date must not be after end date")
        return await self._query(job_id=job_id, start=start, end=end)

    async def list_recent(self, job_id: int, limit: int = 10) -> list[ExecutionSummary]:
        return await self.list_for_job(job_id, limit=limit)

    async def list_filtered(
        self,
        job_id: int,
        status: ExecutionStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ExecutionSummary]:
        """Executions for *job_id* matching every given filter, newest first."""
        if start is not None and end is not None and start > end:
            raise InvalidQueryError("Start date must not be after end date")
        return await self._query(
            job_id=job_id,
            status=status.value if status is not None else None,
            start=start,
            end=end,
            limit=limit,
            offset=offset,
        )

    async def get_details(self, job_id: int, execution_id: int) -> ExecutionDetail:
        """Load one execution with stages (by order) and logs (by time).

        Raises
        ------
        ExecutionNotFoundError
            If the execution does not exist or belongs to a different job.
        """
        async with get_session(self._engine) as session:
            execution = await ExecutionRepository(session).get_by_id(execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id)
            if execution.job_id != job_id:
                logger.warning(
                    "Execution %d belongs to job %d, not job %d",
                    execution_id,
                    execution.job_id,
                    job_id,
                )
                raise ExecutionNotFoundError(execution_id, job_id)

            stages = await StageRepository(session).list_for_execution(execution_id)
            logs = await LogRepository(session).list_for_execution(execution_id)
            return ExecutionDetail(
                execution=ExecutionSummary.model_validate(execution),
                stages=[StageDetail.model_validate(s) for s in stages],
                logs=[LogDetail.model_validate(log) for log in logs],
            )

    # ------------------------------------------------------------------
    # Log queries
    # ------------------------------------------------------------------

    async def list_logs(
        self,
        execution_id: int,
        level: LogLevel | None = None,
        stage_id: int | None = None,
    ) -> list[LogDetail]:
        async with get_session(self._engine) as session:
            rows = await LogRepository(session).list_for_execution(
                execution_id,
                level=level.value if level is not None else None,
                stage_id=stage_id,
            )
            return [LogDetail.model_validate(r) for r in rows]

    async def search_logs(self, text: str, execution_id: int | None = None, limit: int = 100) -> list[LogDetail]:
        async with get_session(self._engine) as session:
            rows = await LogRepository(session).search(text, execution_id=execution_id, limit=limit)
            return [LogDetail.model_validate(r) for r in rows]

    async def recent_error_logs(self, limit: int = 50) -> list[LogDetail]:
        async with get_session(self._engine) as session:
            rows = await LogRepository(session).recent_errors(limit)
            return [LogDetail.model_validate(r) for r in rows]

    async def _query(self, **filters: Any) -> list[ExecutionSummary]:
        async with get_session(self._engine) as session:
            rows = await ExecutionRepository(session).list_filtered(**filters)
            return [ExecutionSummary.model_validate(r) for r in rows]
