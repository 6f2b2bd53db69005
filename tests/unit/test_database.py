"""Tests for the engine factory, the SQLite adapter and the history tables."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest
from feed_engine.state.database import create_tables, dispose_engine, get_engine, get_session
from feed_engine.state.sqlite_adapter import get_local_engine
from feed_engine.state.tables import ExecutionStageTable, ExecutionTable
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------


class TestGetEngine:
    def test_sqlite_url_uses_local_adapter(self, tmp_path: Path) -> None:
        engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'h.db'}")
        assert engine.dialect.name == "sqlite"
        assert "h.db" in str(engine.url)

    def test_sqlite_memory_url(self) -> None:
        engine = get_engine("sqlite+aiosqlite://")
        assert engine.dialect.name == "sqlite"

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "deep" / "history.db"
        get_local_engine(db_path)
        assert db_path.parent.exists()


class TestCreateTables:
    @pytest.mark.asyncio
    async def test_idempotent(self, tmp_path: Path) -> None:
        engine = get_local_engine(tmp_path / "history.db")
        await create_tables(engine)
        await create_tables(engine)
        await dispose_engine(engine)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


async def _insert_execution(session, start: datetime) -> ExecutionTable:
    row = ExecutionTable(job_id=1, status="SUCCESS", start_time=start)
    session.add(row)
    await session.flush()
    return row


class TestTables:
    @pytest.mark.asyncio
    async def test_datetimes_read_back_in_utc(self, engine) -> None:
        local = datetime(2025, 6, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        async with get_session(engine) as session:
            row = await _insert_execution(session, local)
            execution_id = row.id

        async with get_session(engine) as session:
            stored = (
                await session.execute(select(ExecutionTable).where(ExecutionTable.id == execution_id))
            ).scalar_one()
            assert stored.start_time == datetime(2025, 6, 1, 10, 0, tzinfo=UTC)
            assert stored.start_time.tzinfo is not None
            assert stored.created_at is not None

    @pytest.mark.asyncio
    async def test_status_check_constraint(self, engine) -> None:
        with pytest.raises(IntegrityError):
            async with get_session(engine) as session:
                session.add(ExecutionTable(job_id=1, status="PENDING", start_time=datetime.now(UTC)))
                await session.flush()

    @pytest.mark.asyncio
    async def test_stage_order_unique_per_execution(self, engine) -> None:
        with pytest.raises(IntegrityError):
            async with get_session(engine) as session:
                row = await _insert_execution(session, datetime.now(UTC))
                for name in ("A", "B"):
                    session.add(
                        ExecutionStageTable(execution_id=row.id, name=name, status="PENDING", stage_order=1)
                    )
                await session.flush()

    @pytest.mark.asyncio
    async def test_stage_requires_existing_execution(self, engine) -> None:
        with pytest.raises(IntegrityError):
            async with get_session(engine) as session:
                session.add(ExecutionStageTable(execution_id=999, name="A", status="PENDING", stage_order=1))
                await session.flush()
