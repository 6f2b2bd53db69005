"""In-memory execution tracker for a single pipeline run.

An ``ExecutionTracker`` is created when a run starts and is mutated only
through its transition methods: the pipeline runner opens and closes stages,
and the stage currently executing appends log lines.  Once the run has been
handed to the history store the tracker is discarded.

INVARIANT: at most one stage is ``IN_PROGRESS``; ``current_stage_index``
points at it, and is ``None`` whenever no stage is active.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field

from feed_engine.exceptions import StageStateError

Clock = Callable[[], datetime]


class ExecutionStatus(str, Enum):
    """Lifecycle state of a whole run.  A run is never ``PENDING``."""

    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class StageStatus(str, Enum):
    """Lifecycle state of a single stage."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


_TERMINAL_STAGE_STATUSES = frozenset({StageStatus.SUCCESS, StageStatus.FAILED})


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


def millis_between(start: datetime | None, end: datetime | None) -> int:
    """Whole milliseconds from *start* to *end*, or 0 when either is unset."""
    if start is None or end is None:
        return 0
    return (end - start) // timedelta(milliseconds=1)


# ---------------------------------------------------------------------------
# Log lines and stage records
# ---------------------------------------------------------------------------


class LogEntry(BaseModel):
    """A single timestamped log line."""

    timestamp: datetime = Field(..., description="When the line was recorded.")
    message: str = Field(..., description="Log text.")
    stage: str | None = Field(
        default=None,
        description="Name of the stage the line is attributed to, if any.",
    )

    def render(self) -> str:
        return f"[{self.timestamp:%H:%M:%S}] {self.message}"


class StageRecord(BaseModel):
    """Mutable record of one stage within a run."""

    name: str = Field(..., min_length=1, description="Stage name; joins the parameter map.")
    description: str = Field(default="", description="Human summary of the stage.")
    status: StageStatus = Field(default=StageStatus.PENDING)
    start_time: datetime | None = None
    end_time: datetime | None = None
    parameters: dict[str, str] = Field(
        default_factory=dict,
        description="Resolved parameters this stage ran with.",
    )
    error: str | None = None
    logs: list[LogEntry] = Field(default_factory=list)

    @property
    def duration_millis(self) -> int:
        return millis_between(self.start_time, self.end_time)

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_STAGE_STATUSES


# ---------------------------------------------------------------------------
# Snapshot (external output shape)
# ---------------------------------------------------------------------------


class StageSnapshot(BaseModel):
    """Read-only view of a stage as returned to callers."""

    name: str
    description: str
    status: StageStatus
    duration_millis: int
    start_time: datetime | None
    end_time: datetime | None
    error: str | None
    parameters: dict[str, str] = Field(default_factory=dict)
    logs: list[str] = Field(default_factory=list)


class ExecutionSnapshot(BaseModel):
    """Read-only view of a finished (or in-flight) run."""

    execution_id: int | None = Field(
        default=None,
        description="Persisted id, or None when the history could not be saved.",
    )
    job_id: int | None = None
    status: ExecutionStatus
    start_time: datetime
    end_time: datetime | None
    duration_millis: int
    error: str | None
    logs: list[str] = Field(default_factory=list)
    stages: list[StageSnapshot] = Field(default_factory=list)
    total_stages: int = 0
    successful_stages: int = 0
    failed_stages: int = 0
    pending_stages: int = 0
    completion_percentage: float = 0.0
    average_stage_duration_millis: float = 0.0


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class ExecutionTracker:
    """Record of one run: overall status, timestamps, logs and stages.

    Parameters
    ----------
    clock:
        Zero-argument callable returning the current time.  Defaults to a
        UTC wall clock; tests inject a fake to get deterministic durations.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock: Clock = clock or _utcnow
        self.status = ExecutionStatus.IN_PROGRESS
        self.start_time: datetime = self._clock()
        self.end_time: datetime | None = None
        self.error: str | None = None
        self.logs: list[LogEntry] = []
        self.stages: list[StageRecord] = []
        self.current_stage_index: int | None = None

    # -- accessors ---------------------------------------------------------

    @property
    def current_stage(self) -> StageRecord | None:
        if self.current_stage_index is None:
            return None
        return self.stages[self.current_stage_index]

    @property
    def is_terminal(self) -> bool:
        return self.status is not ExecutionStatus.IN_PROGRESS

    @property
    def duration_millis(self) -> int:
        return millis_between(self.start_time, self.end_time)

    # -- logging -----------------------------------------------------------

    def log(self, message: str) -> None:
        """Append a line to the execution stream only."""
        self.logs.append(LogEntry(timestamp=self._clock(), message=message))

    def log_to_current_stage(self, message: str) -> None:
        """Append a line to the active stage and mirror it to the execution.

        When no stage is active the line still reaches the execution stream.
        """
        stage = self.current_stage
        if stage is None:
            self.log(message)
            return
        self._stage_log(stage, message)

    def _stage_log(self, stage: StageRecord, message: str) -> None:
        entry = LogEntry(timestamp=self._clock(), message=message, stage=stage.name)
        stage.logs.append(entry)
        self.logs.append(entry)

    # -- stage transitions -------------------------------------------------

    def add_stage(self, name: str, description: str = "") -> StageRecord:
        """Declare a stage up front so it is reported as ``PENDING`` until started."""
        self._require_open()
        stage = StageRecord(name=name, description=description)
        self.stages.append(stage)
        return stage

    def start_stage(
        self,
        name: str,
        description: str = "",
        params: Mapping[str, str] | None = None,
    ) -> StageRecord:
        """Open a stage and make it the current one.

        The next declared ``PENDING`` stage is activated when its name
        matches; with no declared stages left a new stage is appended.

        Raises
        ------
        StageStateError
            If another stage is still active, the run is already terminal,
            or the next declared stage has a different name.
        """
        self._require_open()
        if self.current_stage_index is not None:
            active = self.stages[self.current_stage_index]
            raise StageStateError(f"Cannot start stage '{name}' while '{active.name}' is still in progress")

        index = self._next_pending_index()
        if index is None:
            self.stages.append(StageRecord(name=name, description=description))
            index = len(self.stages) - 1
        elif self.stages[index].name != name:
            raise StageStateError(f"Expected stage '{self.stages[index].name}' to start next, got '{name}'")

        stage = self.stages[index]
        if description:
            stage.description = description
        stage.parameters = dict(params or {})
        stage.status = StageStatus.IN_PROGRESS
        stage.start_time = self._clock()
        self.current_stage_index = index

        for key, value in stage.parameters.items():
            self._stage_log(stage, f"Parameter: {key} = {value}")
        self._stage_log(stage, f"Stage started: {stage.name}")
        self.log(f"Started stage: {stage.name}")
        return stage

    def complete_current_stage(self) -> StageRecord:
        """Move the active stage to ``SUCCESS`` and clear the current pointer."""
        stage = self._require_current("complete")
        stage.status = StageStatus.SUCCESS
        stage.end_time = self._clock()
        self._stage_log(stage, f"Stage completed successfully in {stage.duration_millis}ms")
        self.current_stage_index = None
        self.log(f"Completed stage: {stage.name}")
        return stage

    def fail_current_stage(self, reason: str) -> StageRecord:
        """Move the active stage to ``FAILED`` with *reason* and clear the pointer."""
        stage = self._require_current("fail")
        stage.status = StageStatus.FAILED
        stage.error = reason
        stage.end_time = self._clock()
        self._stage_log(stage, f"Stage failed: {reason}")
        self.current_stage_index = None
        self.log(f"Failed stage: {stage.name} - {reason}")
        return stage

    # -- execution transitions ---------------------------------------------

    def mark_success(self) -> None:
        self._require_open()
        if self.current_stage_index is not None:
            raise StageStateError("Cannot mark execution successful while a stage is in progress")
        if self.has_failed_stages:
            raise StageStateError("Cannot mark execution successful with failed stages")
        self.status = ExecutionStatus.SUCCESS
        self.end_time = self._clock()

    def mark_failed(self, reason: str) -> None:
        self._require_open()
        self.status = ExecutionStatus.FAILED
        self.error = reason
        self.end_time = self._clock()

    # -- derived queries ---------------------------------------------------

    def count_stages(self, status: StageStatus) -> int:
        return sum(1 for s in self.stages if s.status is status)

    @property
    def successful_stages_count(self) -> int:
        return self.count_stages(StageStatus.SUCCESS)

    @property
    def failed_stages_count(self) -> int:
        return self.count_stages(StageStatus.FAILED)

    @property
    def in_progress_stages_count(self) -> int:
        return self.count_stages(StageStatus.IN_PROGRESS)

    @property
    def pending_stages_count(self) -> int:
        return self.count_stages(StageStatus.PENDING)

    @property
    def completed_stages_count(self) -> int:
        return self.successful_stages_count + self.failed_stages_count

    @property
    def has_failed_stages(self) -> bool:
        return any(s.status is StageStatus.FAILED for s in self.stages)

    @property
    def total_stage_duration_millis(self) -> int:
        return sum(s.duration_millis for s in self.stages)

    @property
    def average_stage_duration_millis(self) -> float:
        """Mean duration over stages that recorded a nonzero duration."""
        durations = [s.duration_millis for s in self.stages if s.duration_millis > 0]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    @property
    def completion_percentage(self) -> float:
        if not self.stages:
            return 0.0
        return self.completed_stages_count * 100.0 / len(self.stages)

    def snapshot(self, execution_id: int | None = None, job_id: int | None = None) -> ExecutionSnapshot:
        """Build the caller-facing view of this run."""
        return ExecutionSnapshot(
            execution_id=execution_id,
            job_id=job_id,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time,
            duration_millis=self.duration_millis,
            error=self.error,
            logs=[entry.render() for entry in self.logs],
            stages=[
                StageSnapshot(
                    name=s.name,
                    description=s.description,
                    status=s.status,
                    duration_millis=s.duration_millis,
                    start_time=s.start_time,
                    end_time=s.end_time,
                    error=s.error,
                    parameters=dict(s.parameters),
                    logs=[entry.render() for entry in s.logs],
                )
                for s in self.stages
            ],
            total_stages=len(self.stages),
            successful_stages=self.successful_stages_count,
            failed_stages=self.failed_stages_count,
            pending_stages=self.pending_stages_count,
            completion_percentage=self.completion_percentage,
            average_stage_duration_millis=self.average_stage_duration_millis,
        )

    # -- guards ------------------------------------------------------------

    def _next_pending_index(self) -> int | None:
        for index, stage in enumerate(self.stages):
            if stage.status is StageStatus.PENDING:
                return index
        return None

    def _require_current(self, action: str) -> StageRecord:
        stage = self.current_stage
        if stage is None:
            raise StageStateError(f"Cannot {action} stage: no stage is in progress")
        if stage.is_terminal:
            raise StageStateError(f"Stage '{stage.name}' is already {stage.status.value}")
        return stage

    def _require_open(self) -> None:
        if self.is_terminal:
            raise StageStateError(f"Execution is already {self.status.value}")
