"""Unit tests for feed_engine.pipeline.base (Deadline, StageContext, BaseStage)."""

from __future__ import annotations

from types import MappingProxyType

import pytest
from feed_engine.exceptions import StageExecutionError, StageTimeoutError
from feed_engine.models.execution import ExecutionTracker
from feed_engine.pipeline.base import BaseStage, Deadline, StageContext


class _Ticker:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


class TestDeadline:
    def test_unbounded(self):
        deadline = Deadline(None)
        assert deadline.remaining() is None
        assert deadline.expired() is False

    def test_expires_after_budget(self):
        ticker = _Ticker()
        deadline = Deadline(5.0, clock=ticker)
        ticker.now = 3.0
        assert deadline.remaining() == pytest.approx(2.0)
        assert deadline.expired() is False
        ticker.now = 5.0
        assert deadline.expired() is True
        assert deadline.remaining() == 0.0


# ---------------------------------------------------------------------------
# StageContext
# ---------------------------------------------------------------------------


class TestStageContext:
    def test_log_reaches_current_stage(self):
        tracker = ExecutionTracker()
        tracker.start_stage("A")
        StageContext(tracker).log("hello")
        assert tracker.stages[0].logs[-1].message == "hello"

    def test_sleep_is_scaled(self, no_sleep):
        ctx = StageContext(ExecutionTracker(), delay_scale=2.0, sleep=no_sleep)
        ctx.sleep(250)
        assert no_sleep.calls == [0.5]

    def test_sleep_capped_by_deadline(self):
        ticker = _Ticker()
        waits: list[float] = []

        def fake_sleep(seconds: float) -> None:
            waits.append(seconds)
            ticker.now += seconds

        ctx = StageContext(ExecutionTracker(), deadline=Deadline(1.0, clock=ticker), sleep=fake_sleep)
        with pytest.raises(StageTimeoutError, match="deadline"):
            ctx.sleep(5000)
        assert waits == [1.0]

    def test_check_deadline_before_sleeping(self, no_sleep):
        ticker = _Ticker()
        deadline = Deadline(1.0, clock=ticker)
        ticker.now = 2.0
        ctx = StageContext(ExecutionTracker(), deadline=deadline, sleep=no_sleep)
        with pytest.raises(StageTimeoutError):
            ctx.sleep(10)
        assert no_sleep.calls == []

    def test_timeout_is_a_stage_failure(self):
        assert issubclass(StageTimeoutError, StageExecutionError)


# ---------------------------------------------------------------------------
# BaseStage parameter helpers
# ---------------------------------------------------------------------------


class _Typed(BaseStage):
    name = "Typed"
    DEFAULTS = MappingProxyType({"count": "3", "ratio": "0.5", "flag": "true"})

    def execute(self, params, ctx):
        ctx.log(f"count={self.int_param(params, 'count')}")


class TestBaseStage:
    def test_cannot_instantiate_without_execute(self):
        with pytest.raises(TypeError):
            BaseStage()  # type: ignore[abstract]

        class Incomplete(BaseStage):
            name = "Incomplete"

        with pytest.raises(TypeError):
            Incomplete()  # type: ignore[abstract]

    def test_default_parameters_read_only(self):
        stage = _Typed()
        with pytest.raises(TypeError):
            stage.default_parameters["count"] = "4"  # type: ignore[index]

    def test_instance_defaults_override(self):
        stage = _Typed({"count": "9"})
        assert dict(stage.default_parameters) == {"count": "9"}
        assert dict(_Typed.DEFAULTS)["count"] == "3"

    def test_helpers_fall_back_to_defaults(self):
        stage = _Typed()
        assert stage.int_param({}, "count") == 3
        assert stage.float_param({}, "ratio") == 0.5
        assert stage.bool_param({}, "flag") is True

    def test_helpers_prefer_given_params(self):
        stage = _Typed()
        assert stage.int_param({"count": " 12 "}, "count") == 12
        assert stage.bool_param({"flag": "No"}, "flag") is False

    @pytest.mark.parametrize(
        ("helper", "key", "value"),
        [("int_param", "count", "x"), ("float_param", "ratio", "abc"), ("bool_param", "flag", "maybe")],
    )
    def test_malformed_values_fail_the_stage(self, helper, key, value):
        stage = _Typed()
        with pytest.raises(StageExecutionError, match=key):
            getattr(stage, helper)({key: value}, key)

    def test_missing_parameter(self):
        with pytest.raises(StageExecutionError, match="Missing required parameter 'other'"):
            _Typed().int_param({}, "other")
