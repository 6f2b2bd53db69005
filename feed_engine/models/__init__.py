"""Domain models for the feed execution engine."""

from feed_engine.models.execution import (
    ExecutionSnapshot,
    ExecutionStatus,
    ExecutionTracker,
    LogEntry,
    StageRecord,
    StageSnapshot,
    StageStatus,
)
from feed_engine.models.history import (
    ExecutionDetail,
    ExecutionStats,
    ExecutionSummary,
    LogDetail,
    LogLevel,
    StageDetail,
    StageStats,
)

__all__ = [
    "ExecutionDetail",
    "ExecutionSnapshot",
    "ExecutionStats",
    "ExecutionStatus",
    "ExecutionSummary",
    "ExecutionTracker",
    "LogDetail",
    "LogEntry",
    "LogLevel",
    "StageDetail",
    "StageRecord",
    "StageSnapshot",
    "StageStats",
    "StageStatus",
]
