"""Execution history persistence (PostgreSQL or SQLite)."""

from feed_engine.state.database import create_tables, dispose_engine, get_engine, get_session
from feed_engine.state.repository import ExecutionRepository, LogRepository, StageRepository

__all__ = [
    "ExecutionRepository",
    "LogRepository",
    "StageRepository",
    "create_tables",
    "dispose_engine",
    "get_engine",
    "get_session",
]
