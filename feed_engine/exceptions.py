"""Exception hierarchy for the feed execution engine.

Stage and persistence failures are contained inside the engine (the runner
and the execution service catch them).  Only lookup failures and bad caller
input are meant to reach the boundary.
"""

from __future__ import annotations


class FeedEngineError(Exception):
    """Base exception for all feed_engine errors."""


# ---------------------------------------------------------------------------
# Stage execution
# ---------------------------------------------------------------------------


class StageExecutionError(FeedEngineError):
    """A stage's work function could not complete."""


class StageTimeoutError(StageExecutionError):
    """The run deadline expired while a stage was executing."""


class StageStateError(FeedEngineError):
    """An execution tracker transition violated the stage lifecycle."""


class ParameterParseError(FeedEngineError):
    """Raw stage parameters could not be parsed."""


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class PersistenceError(FeedEngineError):
    """Writing or deleting execution history failed."""


class ExecutionNotFoundError(FeedEngineError):
    """Raised when an execution does not exist or belongs to another job."""

    def __init__(self, execution_id: int, job_id: int | None = None) -> None:
        self.execution_id = execution_id
        self.job_id = job_id
        if job_id is None:
            message = f"Execution {execution_id} not found"
        else:
            message = f"Execution {execution_id} not found for job {job_id}"
        super().__init__(message)


class JobNotFoundError(FeedEngineError):
    """Raised when no pipeline is registered for a job id."""

    def __init__(self, job_id: int) -> None:
        self.job_id = job_id
        super().__init__(f"No pipeline registered for job {job_id}")


class InvalidQueryError(FeedEngineError, ValueError):
    """Caller-supplied filter values (status, dates) are malformed."""
