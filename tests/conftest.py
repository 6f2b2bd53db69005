"""Shared fixtures: an in-memory history database and a deterministic clock."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from feed_engine.state.database import create_tables, dispose_engine
from feed_engine.state.sqlite_adapter import get_local_engine


class FakeClock:
    """Callable clock that advances by a fixed step on every read."""

    def __init__(self, start: datetime | None = None, step_millis: int = 10) -> None:
        self.now = start or datetime(2025, 1, 15, 9, 30, tzinfo=UTC)
        self.step = timedelta(milliseconds=step_millis)

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current

    def advance(self, millis: int) -> None:
        self.now += timedelta(milliseconds=millis)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def frozen_clock() -> FakeClock:
    """A clock that never advances on its own."""
    return FakeClock(step_millis=0)


@pytest_asyncio.fixture
async def engine():
    """Provide an async engine backed by a fresh in-memory SQLite database."""
    engine = get_local_engine(":memory:")
    await create_tables(engine)
    yield engine
    await dispose_engine(engine)


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested waits instead of blocking."""
    calls: list[float] = []

    def _sleep(seconds: float) -> None:
        calls.append(seconds)

    _sleep.calls = calls  # type: ignore[attr-defined]
    return _sleep
