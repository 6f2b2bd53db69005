"""Read models returned by history and statistics queries.

These are detached from the ORM session: every query result is converted
into one of these pydantic models before the session closes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from feed_engine.models.execution import ExecutionStatus, StageStatus


class LogLevel(str, Enum):
    """Severity derived from a persisted log line's text."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class ExecutionSummary(BaseModel):
    """One persisted execution without its stages or logs."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: int
    status: ExecutionStatus
    start_time: datetime
    end_time: datetime | None = None
    parameters: str | None = Field(default=None, description="Raw parameter string the run was started with.")
    error: str | None = None
    duration_millis: int | None = None
    created_at: datetime | None = None


class StageDetail(BaseModel):
    """A persisted stage row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    execution_id: int
    name: str
    description: str | None = None
    status: StageStatus
    start_time: datetime | None = None
    end_time: datetime | None = None
    parameters: str | None = Field(default=None, description="Encoded stage parameters (JSON when possible).")
    error: str | None = None
    duration_millis: int | None = None
    stage_order: int


class LogDetail(BaseModel):
    """A persisted log row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    execution_id: int
    stage_id: int | None = None
    message: str
    timestamp: datetime
    log_level: LogLevel


class ExecutionDetail(BaseModel):
    """An execution with its stages (by ``stage_order``) and logs (by time)."""

    execution: ExecutionSummary
    stages: list[StageDetail] = Field(default_factory=list)
    logs: list[LogDetail] = Field(default_factory=list)

    def logs_for_stage(self, stage_id: int) -> list[LogDetail]:
        return [log for log in self.logs if log.stage_id == stage_id]


class ExecutionStats(BaseModel):
    """Success-rate and duration statistics for one job."""

    job_id: int
    total: int = Field(default=0, ge=0)
    successful: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    average_duration_millis: float | None = Field(
        default=None,
        description="Mean duration of successful runs; None when none qualify.",
    )
    success_rate: float = Field(default=0.0, ge=0.0, le=100.0)


class StageStats(BaseModel):
    """Per-stage-name statistics across a job's executions."""

    name: str
    runs: int = 0
    failures: int = 0
    average_duration_millis: float | None = None
