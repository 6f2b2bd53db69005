"""Repository layer over the history tables.

Each repository wraps an :class:`AsyncSession` and only flushes; committing
is left to the caller's ``get_session`` block so a multi-table write (or a
purge) succeeds or fails as a unit.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feed_engine.state.tables import ExecutionLogTable, ExecutionStageTable, ExecutionTable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


class ExecutionRepository:
    """CRUD and query operations for the ``executions`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: dict[str, Any]) -> ExecutionTable:
        """Insert an execution row and flush to obtain its id.

        Expected keys: ``job_id``, ``status``, ``start_time``, and optional
        ``end_time``, ``parameters``, ``error``, ``duration_millis``.
        """
        row = ExecutionTable(
            job_id=record["job_id"],
            status=record["status"],
            start_time=record["start_time"],
            end_time=record.get("end_time"),
            parameters=record.get("parameters"),
            error=record.get("error"),
            duration_millis=record.get("duration_millis"),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_id(self, execution_id: int) -> ExecutionTable | None:
        stmt = select(ExecutionTable).where(ExecutionTable.id == execution_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_filtered(
        self,
        job_id: int | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ExecutionTable]:
        """Return executions matching every given filter, newest first.

        ``start`` and ``end`` bound ``start_time`` inclusively.
        """
        stmt = select(ExecutionTable)
        if job_id is not None:
            stmt = stmt.where(ExecutionTable.job_id == job_id)
        if status is not None:
            stmt = stmt.where(ExecutionTable.status == status)
        if start is not None:
            stmt = stmt.where(ExecutionTable.start_time >= start)
        if end is not None:
            stmt = stmt.where(ExecutionTable.start_time <= end)
        stmt = stmt.order_by(ExecutionTable.start_time.desc(), ExecutionTable.id.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_job_stats(self, job_id: int) -> dict[str, Any]:
        """Aggregate counts and the mean duration of successful runs.

        Returns
        -------
        dict
            ``{"total": int, "successful": int, "failed": int,
               "avg_duration_millis": float | None}``
        """
        stmt = select(
            func.count().label("total"),
            func.count().filter(ExecutionTable.status == "SUCCESS").label("successful"),
            func.count().filter(ExecutionTable.status == "FAILED").label("failed"),
            func.avg(ExecutionTable.duration_millis)
            .filter(
                ExecutionTable.status == "SUCCESS",
                ExecutionTable.duration_millis.is_not(None),
            )
            .label("avg_duration"),
        ).where(ExecutionTable.job_id == job_id)
        result = await self._session.execute(stmt)
        row = result.one()
        return {
            "total": row.total or 0,
            "successful": row.successful or 0,
            "failed": row.failed or 0,
            "avg_duration_millis": float(row.avg_duration) if row.avg_duration is not None else None,
        }

    async def ids_started_before(self, cutoff: datetime) -> list[int]:
        stmt = select(ExecutionTable.id).where(ExecutionTable.start_time < cutoff)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete_by_ids(self, execution_ids: Sequence[int]) -> int:
        if not execution_ids:
            return 0
        stmt = delete(ExecutionTable).where(ExecutionTable.id.in_(execution_ids))
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


class StageRepository:
    """CRUD and query operations for the ``execution_stages`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, execution_id: int, record: dict[str, Any]) -> ExecutionStageTable:
        row = ExecutionStageTable(
            execution_id=execution_id,
            name=record["name"],
            description=record.get("description"),
            status=record["status"],
            start_time=record.get("start_time"),
            end_time=record.get("end_time"),
            parameters=record.get("parameters"),
            error=record.get("error"),
            duration_millis=record.get("duration_millis"),
            stage_order=record["stage_order"],
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_execution(self, execution_id: int) -> list[ExecutionStageTable]:
        """Return an execution's stages ordered by ``stage_order``."""
        stmt = (
            select(ExecutionStageTable)
            .where(ExecutionStageTable.execution_id == execution_id)
            .order_by(ExecutionStageTable.stage_order.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_stage_stats(self, job_id: int) -> list[dict[str, Any]]:
        """Per-stage-name run and failure counts with mean successful duration."""
        stmt = (
            select(
                ExecutionStageTable.name.label("name"),
                func.count().filter(ExecutionStageTable.status != "PENDING").label("runs"),
                func.count().filter(ExecutionStageTable.status == "FAILED").label("failures"),
                func.avg(ExecutionStageTable.duration_millis)
                .filter(ExecutionStageTable.status == "SUCCESS")
                .label("avg_duration"),
                func.min(ExecutionStageTable.stage_order).label("first_order"),
            )
            .join(ExecutionTable, ExecutionTable.id == ExecutionStageTable.execution_id)
            .where(ExecutionTable.job_id == job_id)
            .group_by(ExecutionStageTable.name)
            .order_by("first_order", ExecutionStageTable.name)
        )
        result = await self._session.execute(stmt)
        return [
            {
                "name": row.name,
                "runs": row.runs or 0,
                "failures": row.failures or 0,
                "avg_duration_millis": float(row.avg_duration) if row.avg_duration is not None else None,
            }
            for row in result.all()
        ]

    async def delete_for_executions(self, execution_ids: Sequence[int]) -> int:
        if not execution_ids:
            return 0
        stmt = delete(ExecutionStageTable).where(ExecutionStageTable.execution_id.in_(execution_ids))
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


class LogRepository:
    """CRUD and query operations for the ``execution_logs`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add_many(self, records: Sequence[dict[str, Any]]) -> int:
        """Insert log rows in one flush.  Returns the number of rows added."""
        rows = [
            ExecutionLogTable(
                execution_id=r["execution_id"],
                stage_id=r.get("stage_id"),
                message=r["message"],
                timestamp=r["timestamp"],
                log_level=r["log_level"],
            )
            for r in records
        ]
        self._session.add_all(rows)
        await self._session.flush()
        return len(rows)

    async def list_for_execution(
        self,
        execution_id: int,
        level: str | None = None,
        stage_id: int | None = None,
    ) -> list[ExecutionLogTable]:
        """Return an execution's logs in timestamp order."""
        stmt = select(ExecutionLogTable).where(ExecutionLogTable.execution_id == execution_id)
        if level is not None:
            stmt = stmt.where(ExecutionLogTable.log_level == level)
        if stage_id is not None:
            stmt = stmt.where(ExecutionLogTable.stage_id == stage_id)
        stmt = stmt.order_by(ExecutionLogTable.timestamp.asc(), ExecutionLogTable.id.asc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def search(self, text: str, execution_id: int | None = None, limit: int = 100) -> list[ExecutionLogTable]:
        """Logs whose message contains *text*, newest first."""
        stmt = select(ExecutionLogTable).where(ExecutionLogTable.message.contains(text, autoescape=True))
        if execution_id is not None:
            stmt = stmt.where(ExecutionLogTable.execution_id == execution_id)
        stmt = stmt.order_by(ExecutionLogTable.timestamp.desc(), ExecutionLogTable.id.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def recent_errors(self, limit: int = 50) -> list[ExecutionLogTable]:
        stmt = (
            select(ExecutionLogTable)
            .where(ExecutionLogTable.log_level == "ERROR")
            .order_by(ExecutionLogTable.timestamp.desc(), ExecutionLogTable.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete_for_executions(self, execution_ids: Sequence[int]) -> int:
        if not execution_ids:
            return 0
        stmt = delete(ExecutionLogTable).where(ExecutionLogTable.execution_id.in_(execution_ids))
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount  # type: ignore[return-value]
