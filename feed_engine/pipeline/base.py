"""Stage interface and the per-stage execution context.

Every stage -- whether it simulates work or talks to a real delivery
system -- must satisfy the :class:`Stage` protocol so that the pipeline
runner can remain agnostic of what the stage does.  The runner only cares
how a stage reports its outcome: returning normally means success, raising
means failure.
"""

from __future__ import annotations

import abc
import time
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import ClassVar, Protocol

from feed_engine.exceptions import StageExecutionError, StageTimeoutError
from feed_engine.models.execution import ExecutionTracker

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


class Stage(Protocol):
    """Structural interface for a named unit of pipeline work."""

    name: str
    description: str
    default_parameters: Mapping[str, str]

    def execute(self, params: Mapping[str, str], ctx: StageContext) -> None:
        """Perform the stage's work.

        Parameters
        ----------
        params:
            Resolved parameters for this stage.
        ctx:
            Log sink, deadline and delay helper for the current run.

        Raises
        ------
        Exception
            Any exception marks the stage ``FAILED`` with the exception's
            message as the stage error.
        """
        ...


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


class Deadline:
    """Wall-clock budget for a run, measured on a monotonic clock."""

    def __init__(
        self,
        seconds: float | None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.seconds = seconds
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> float | None:
        """Seconds left before expiry, or ``None`` for an unbounded run."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at


# ---------------------------------------------------------------------------
# Stage context
# ---------------------------------------------------------------------------


class StageContext:
    """Handle passed to a running stage.

    Stages write their log lines through :meth:`log` and perform blocking
    waits through :meth:`sleep` so the run deadline is honoured between
    sub-steps.
    """

    def __init__(
        self,
        tracker: ExecutionTracker,
        deadline: Deadline | None = None,
        delay_scale: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._tracker = tracker
        self.deadline = deadline or Deadline(None)
        self.delay_scale = delay_scale
        self._sleep = sleep

    def log(self, message: str) -> None:
        self._tracker.log_to_current_stage(message)

    def check_deadline(self) -> None:
        """Raise :class:`StageTimeoutError` once the run deadline has passed."""
        if self.deadline.expired():
            raise StageTimeoutError(f"Run deadline of {self.deadline.seconds}s exceeded")

    def sleep(self, millis: float) -> None:
        """Block for *millis* (scaled by ``delay_scale``), bounded by the deadline."""
        self.check_deadline()
        seconds = millis / 1000.0 * self.delay_scale
        remaining = self.deadline.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._sleep(seconds)
        self.check_deadline()


# ---------------------------------------------------------------------------
# Base implementation
# ---------------------------------------------------------------------------


class BaseStage(abc.ABC):
    """Convenience base for stages with static default parameters.

    ``DEFAULTS`` is class-level data and is never mutated; each instance
    exposes a read-only copy as ``default_parameters``.
    """

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    DEFAULTS: ClassVar[Mapping[str, str]] = MappingProxyType({})

    def __init__(self, defaults: Mapping[str, str] | None = None) -> None:
        source = self.DEFAULTS if defaults is None else defaults
        self.default_parameters: Mapping[str, str] = MappingProxyType(dict(source))

    @abc.abstractmethod
    def execute(self, params: Mapping[str, str], ctx: StageContext) -> None:
        """Run the stage; raise to report failure."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    # -- parameter helpers -------------------------------------------------

    def _raw(self, params: Mapping[str, str], key: str) -> str:
        value = params.get(key, self.default_parameters.get(key))
        if value is None:
            raise StageExecutionError(f"Missing required parameter '{key}'")
        return str(value).strip()

    def int_param(self, params: Mapping[str, str], key: str) -> int:
        raw = self._raw(params, key)
        try:
            return int(raw)
        except ValueError as exc:
            raise StageExecutionError(f"Invalid integer for parameter '{key}': {raw!r}") from exc

    def float_param(self, params: Mapping[str, str], key: str) -> float:
        raw = self._raw(params, key)
        try:
            return float(raw)
        except ValueError as exc:
            raise StageExecutionError(f"Invalid number for parameter '{key}': {raw!r}") from exc

    def bool_param(self, params: Mapping[str, str], key: str) -> bool:
        raw = self._raw(params, key).lower()
        if raw in _TRUE_VALUES:
            return True
        if raw in _FALSE_VALUES:
            return False
        raise StageExecutionError(f"Invalid boolean for parameter '{key}': {raw!r}")
