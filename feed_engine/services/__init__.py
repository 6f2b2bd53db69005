"""Execution, history and statistics services."""

from feed_engine.services.execution_service import FeedExecutionService
from feed_engine.services.history_service import HistoryStore
from feed_engine.services.stats_service import StatsAggregator

__all__ = ["FeedExecutionService", "HistoryStore", "StatsAggregator"]
