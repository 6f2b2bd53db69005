"""Unit tests for feed_engine.models.execution.ExecutionTracker."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from feed_engine.exceptions import StageStateError
from feed_engine.models.execution import (
    ExecutionStatus,
    ExecutionTracker,
    LogEntry,
    StageStatus,
    millis_between,
)

# ---------------------------------------------------------------------------
# Initial state
# ---------------------------------------------------------------------------


class TestNewTracker:
    def test_starts_in_progress(self, frozen_clock):
        tracker = ExecutionTracker(clock=frozen_clock)
        assert tracker.status == ExecutionStatus.IN_PROGRESS
        assert tracker.start_time == datetime(2025, 1, 15, 9, 30, tzinfo=UTC)
        assert tracker.end_time is None
        assert tracker.error is None

    def test_duration_zero_until_terminal(self, frozen_clock):
        tracker = ExecutionTracker(clock=frozen_clock)
        frozen_clock.advance(500)
        assert tracker.duration_millis == 0

    def test_no_current_stage(self):
        tracker = ExecutionTracker()
        assert tracker.current_stage is None
        assert tracker.current_stage_index is None

    def test_completion_zero_without_stages(self):
        tracker = ExecutionTracker()
        assert tracker.completion_percentage == 0.0
        assert tracker.average_stage_duration_millis == 0.0


# ---------------------------------------------------------------------------
# Stage transitions
# ---------------------------------------------------------------------------


class TestStartStage:
    def test_appends_in_progress_stage(self, frozen_clock):
        tracker = ExecutionTracker(clock=frozen_clock)
        stage = tracker.start_stage("Load", "Load rows", {"batch": "10"})

        assert tracker.stages == [stage]
        assert stage.status == StageStatus.IN_PROGRESS
        assert stage.start_time is not None
        assert stage.end_time is None
        assert stage.parameters == {"batch": "10"}
        assert tracker.current_stage_index == 0

    def test_logs_parameters_and_start(self):
        tracker = ExecutionTracker()
        stage = tracker.start_stage("Load", "Load rows", {"a": "1", "b": "2"})

        messages = [entry.message for entry in stage.logs]
        assert messages == ["Parameter: a = 1", "Parameter: b = 2", "Stage started: Load"]
        assert tracker.logs[-1].message == "Started stage: Load"
        assert tracker.logs[-1].stage is None

    def test_stage_lines_are_mirrored_with_attribution(self):
        tracker = ExecutionTracker()
        tracker.start_stage("Load", params={"a": "1"})

        mirrored = [entry for entry in tracker.logs if entry.stage == "Load"]
        assert [entry.message for entry in mirrored] == ["Parameter: a = 1", "Stage started: Load"]

    def test_parameters_are_copied(self):
        params = {"a": "1"}
        tracker = ExecutionTracker()
        stage = tracker.start_stage("Load", params=params)
        params["a"] = "changed"
        assert stage.parameters == {"a": "1"}

    def test_rejects_second_active_stage(self):
        tracker = ExecutionTracker()
        tracker.start_stage("Load")
        with pytest.raises(StageStateError, match="still in progress"):
            tracker.start_stage("Transform")

    def test_rejects_start_after_terminal(self):
        tracker = ExecutionTracker()
        tracker.mark_failed("boom")
        with pytest.raises(StageStateError):
            tracker.start_stage("Load")


class TestCompleteAndFail:
    def test_complete_records_duration(self, frozen_clock):
        tracker = ExecutionTracker(clock=frozen_clock)
        stage = tracker.start_stage("Load")
        frozen_clock.advance(250)
        tracker.complete_current_stage()

        assert stage.status == StageStatus.SUCCESS
        assert stage.duration_millis == 250
        assert stage.logs[-1].message == "Stage completed successfully in 250ms"
        assert tracker.logs[-1].message == "Completed stage: Load"
        assert tracker.current_stage is None

    def test_fail_records_reason(self):
        tracker = ExecutionTracker()
        stage = tracker.start_stage("Load")
        tracker.fail_current_stage("disk full")

        assert stage.status == StageStatus.FAILED
        assert stage.error == "disk full"
        assert stage.end_time is not None
        assert stage.logs[-1].message == "Stage failed: disk full"
        assert tracker.logs[-1].message == "Failed stage: Load - disk full"
        assert tracker.current_stage_index is None

    def test_complete_without_active_stage_raises(self):
        tracker = ExecutionTracker()
        with pytest.raises(StageStateError, match="no stage is in progress"):
            tracker.complete_current_stage()

    def test_terminal_stage_cannot_transition_again(self):
        tracker = ExecutionTracker()
        tracker.start_stage("Load")
        tracker.complete_current_stage()
        with pytest.raises(StageStateError):
            tracker.fail_current_stage("late failure")
        assert tracker.stages[0].status == StageStatus.SUCCESS

    def test_end_time_not_before_start_time(self, clock):
        tracker = ExecutionTracker(clock=clock)
        stage = tracker.start_stage("Load")
        tracker.complete_current_stage()
        assert stage.end_time >= stage.start_time


class TestLogging:
    def test_log_to_current_stage_without_stage(self):
        tracker = ExecutionTracker()
        tracker.log_to_current_stage("orphan line")
        assert tracker.logs[-1].message == "orphan line"
        assert tracker.logs[-1].stage is None

    def test_log_to_current_stage_reaches_both_streams(self):
        tracker = ExecutionTracker()
        stage = tracker.start_stage("Load")
        tracker.log_to_current_stage("reading file")

        assert stage.logs[-1].message == "reading file"
        assert tracker.logs[-1].message == "reading file"
        assert tracker.logs[-1].stage == "Load"

    def test_render_format(self):
        entry = LogEntry(timestamp=datetime(2025, 1, 1, 7, 5, 9, tzinfo=UTC), message="hello")
        assert entry.render() == "[07:05:09] hello"


# ---------------------------------------------------------------------------
# Declared stages
# ---------------------------------------------------------------------------


class TestDeclaredStages:
    def _declare(self, tracker: ExecutionTracker) -> None:
        for name in ("A", "B", "C", "D"):
            tracker.add_stage(name, f"stage {name}")

    def test_start_activates_declared_stage(self):
        tracker = ExecutionTracker()
        self._declare(tracker)
        stage = tracker.start_stage("A", "stage A")
        assert stage is tracker.stages[0]
        assert len(tracker.stages) == 4

    def test_out_of_order_start_rejected(self):
        tracker = ExecutionTracker()
        self._declare(tracker)
        with pytest.raises(StageStateError, match="Expected stage 'A'"):
            tracker.start_stage("B")

    def test_unstarted_stages_remain_pending(self):
        tracker = ExecutionTracker()
        self._declare(tracker)
        tracker.start_stage("A")
        tracker.complete_current_stage()
        tracker.start_stage("B")
        tracker.fail_current_stage("bad input")

        later = tracker.stages[2:]
        assert all(s.status == StageStatus.PENDING for s in later)
        assert all(s.start_time is None and s.end_time is None for s in later)
        assert tracker.pending_stages_count == 2

    def test_completion_percentage_is_monotonic(self):
        tracker = ExecutionTracker()
        self._declare(tracker)
        seen = [tracker.completion_percentage]
        for name in ("A", "B", "C"):
            tracker.start_stage(name)
            seen.append(tracker.completion_percentage)
            tracker.complete_current_stage()
            seen.append(tracker.completion_percentage)

        assert seen == sorted(seen)
        assert tracker.completion_percentage == 75.0

    def test_failed_stage_counts_toward_completion(self):
        tracker = ExecutionTracker()
        self._declare(tracker)
        tracker.start_stage("A")
        tracker.fail_current_stage("x")
        assert tracker.completion_percentage == 25.0


# ---------------------------------------------------------------------------
# Execution transitions and derived values
# ---------------------------------------------------------------------------


class TestExecutionTransitions:
    def test_mark_success(self, frozen_clock):
        tracker = ExecutionTracker(clock=frozen_clock)
        tracker.start_stage("A")
        tracker.complete_current_stage()
        frozen_clock.advance(1200)
        tracker.mark_success()

        assert tracker.status == ExecutionStatus.SUCCESS
        assert tracker.duration_millis == 1200
        assert tracker.error is None

    def test_mark_success_refused_with_failed_stage(self):
        tracker = ExecutionTracker()
        tracker.start_stage("A")
        tracker.fail_current_stage("x")
        with pytest.raises(StageStateError):
            tracker.mark_success()

    def test_mark_success_refused_while_stage_active(self):
        tracker = ExecutionTracker()
        tracker.start_stage("A")
        with pytest.raises(StageStateError):
            tracker.mark_success()

    def test_mark_failed_sets_error(self):
        tracker = ExecutionTracker()
        tracker.mark_failed("Stage 'A' failed: x")
        assert tracker.status == ExecutionStatus.FAILED
        assert tracker.error == "Stage 'A' failed: x"
        assert tracker.end_time is not None

    def test_terminal_transition_happens_once(self):
        tracker = ExecutionTracker()
        tracker.mark_failed("x")
        with pytest.raises(StageStateError):
            tracker.mark_failed("y")
        assert tracker.error == "x"


class TestDerivedValues:
    def test_counts_by_status(self):
        tracker = ExecutionTracker()
        for name in ("A", "B", "C"):
            tracker.add_stage(name)
        tracker.start_stage("A")
        tracker.complete_current_stage()
        tracker.start_stage("B")
        tracker.fail_current_stage("x")

        assert tracker.successful_stages_count == 1
        assert tracker.failed_stages_count == 1
        assert tracker.pending_stages_count == 1
        assert tracker.in_progress_stages_count == 0
        assert tracker.has_failed_stages is True

    def test_average_ignores_zero_durations(self, frozen_clock):
        tracker = ExecutionTracker(clock=frozen_clock)
        tracker.start_stage("A")
        frozen_clock.advance(100)
        tracker.complete_current_stage()
        tracker.start_stage("B")
        tracker.complete_current_stage()  # 0ms
        tracker.start_stage("C")
        frozen_clock.advance(300)
        tracker.complete_current_stage()

        assert tracker.total_stage_duration_millis == 400
        assert tracker.average_stage_duration_millis == 200.0

    def test_millis_between(self):
        start = datetime(2025, 1, 1, tzinfo=UTC)
        end = datetime(2025, 1, 1, 0, 0, 1, 500000, tzinfo=UTC)
        assert millis_between(start, end) == 1500
        assert millis_between(start, None) == 0
        assert millis_between(None, end) == 0


class TestSnapshot:
    def test_snapshot_shape(self, frozen_clock):
        tracker = ExecutionTracker(clock=frozen_clock)
        tracker.add_stage("A", "first")
        tracker.add_stage("B", "second")
        tracker.start_stage("A", "first", {"k": "v"})
        frozen_clock.advance(40)
        tracker.complete_current_stage()
        tracker.start_stage("B", "second")
        tracker.fail_current_stage("boom")
        tracker.mark_failed("Stage 'B' failed: boom")

        snap = tracker.snapshot(execution_id=7, job_id=3)

        assert snap.execution_id == 7
        assert snap.job_id == 3
        assert snap.status == ExecutionStatus.FAILED
        assert snap.error == "Stage 'B' failed: boom"
        assert [s.name for s in snap.stages] == ["A", "B"]
        assert snap.stages[0].duration_millis == 40
        assert snap.stages[0].parameters == {"k": "v"}
        assert snap.stages[1].error == "boom"
        assert snap.total_stages == 2
        assert snap.completion_percentage == 100.0
        assert snap.logs[0].startswith("[09:30:00] ")

    def test_snapshot_is_detached(self):
        tracker = ExecutionTracker()
        tracker.start_stage("A")
        snap = tracker.snapshot()
        tracker.log_to_current_stage("after snapshot")
        assert "after snapshot" not in " ".join(snap.logs)
