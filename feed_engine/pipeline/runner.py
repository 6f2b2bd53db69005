"""Sequential, fail-fast pipeline runner.

Stages run strictly in declaration order.  The first stage that raises is
marked ``FAILED`` and no later stage is started; there is no retry edge and
no skip edge.  :meth:`PipelineRunner.run` never raises -- the caller always
gets back a tracker in a terminal state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

from feed_engine.exceptions import StageStateError
from feed_engine.models.execution import ExecutionTracker
from feed_engine.pipeline.base import Deadline, Stage, StageContext
from feed_engine.pipeline.parameters import ParameterResolver

logger = logging.getLogger(__name__)


def failure_reason(exc: BaseException) -> str:
    """Human-readable reason for a stage failure."""
    return str(exc) or type(exc).__name__


class PipelineRunner:
    """Drives an ordered list of stages against one execution tracker.

    Parameters
    ----------
    stages:
        Stages in execution order.  Names must be unique.
    resolver:
        Parameter resolver keyed by stage name.  Built from the stages'
        default parameters when omitted.
    deadline_seconds:
        Optional wall-clock budget for the whole run, enforced between
        stage sub-steps through :class:`StageContext`.
    delay_scale:
        Multiplier applied to every simulated stage delay.
    sleep:
        Blocking wait used by stage contexts.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        resolver: ParameterResolver | None = None,
        deadline_seconds: float | None = None,
        delay_scale: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Stage names must be unique: {names}")
        self._stages = list(stages)
        self._resolver = resolver or ParameterResolver({s.name: s.default_parameters for s in self._stages})
        self._deadline_seconds = deadline_seconds
        self._delay_scale = delay_scale
        self._sleep = sleep

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    def run(self, tracker: ExecutionTracker, raw_parameters: str | None = None) -> ExecutionTracker:
        """Execute every stage in order, stopping at the first failure."""
        try:
            self._run_stages(tracker, raw_parameters)
        except Exception as exc:
            reason = failure_reason(exc)
            logger.exception("Pipeline execution failed: %s", reason)
            self._abort(tracker, reason)
        return tracker

    def _run_stages(self, tracker: ExecutionTracker, raw_parameters: str | None) -> None:
        resolved = self._resolver.resolve(raw_parameters)
        if resolved.error is not None:
            tracker.log(f"WARNING: Failed to parse parameters, using defaults: {resolved.error}")

        for stage in self._stages:
            tracker.add_stage(stage.name, stage.description)
        tracker.log(f"Initialized {len(self._stages)} execution stages")

        deadline = Deadline(self._deadline_seconds)
        failed_stage: str | None = None
        failed_reason = ""

        for stage in self._stages:
            params = resolved.params_for(stage.name)
            tracker.start_stage(stage.name, stage.description, params)
            ctx = StageContext(tracker, deadline=deadline, delay_scale=self._delay_scale, sleep=self._sleep)
            try:
                ctx.check_deadline()
                stage.execute(params, ctx)
            except StageStateError:
                raise
            except Exception as exc:
                failed_stage = stage.name
                failed_reason = failure_reason(exc)
                logger.warning("Stage %s failed: %s", stage.name, failed_reason)
                tracker.fail_current_stage(failed_reason)
                break
            tracker.complete_current_stage()
            logger.debug("Stage %s completed", stage.name)

        if failed_stage is not None:
            tracker.log("One or more stages failed during execution")
            tracker.mark_failed(f"Stage '{failed_stage}' failed: {failed_reason}")
        else:
            tracker.log("All stages completed successfully")
            tracker.mark_success()

    def _abort(self, tracker: ExecutionTracker, reason: str) -> None:
        """Force the tracker into ``FAILED`` after an unexpected runner error."""
        if tracker.current_stage is not None:
            tracker.fail_current_stage(reason)
        tracker.log(f"ERROR: {reason}")
        if not tracker.is_terminal:
            tracker.mark_failed(f"Pipeline execution failed: {reason}")
