"""Retry with backoff for use inside individual stages.

The pipeline itself never retries a failed stage.  A stage that polls an
external system may wrap the poll in :func:`retry_with_backoff` and only
raise once its own attempts are exhausted.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Tuneable parameters for retry behaviour."""

    max_retries: int = Field(
        default=3,
        ge=0,
        description="Maximum number of retry attempts before re-raising.",
    )
    base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay in seconds for exponential backoff.",
    )
    max_delay: float = Field(
        default=60.0,
        ge=0.0,
        description="Upper bound on delay in seconds.",
    )
    jitter: bool = Field(
        default=True,
        description="When enabled, randomise the delay within [0.5x, 1.5x].",
    )

    @classmethod
    def fixed(cls, max_retries: int, delay: float) -> RetryConfig:
        """A constant delay between attempts, without jitter."""
        return cls(max_retries=max_retries, base_delay=delay, max_delay=delay, jitter=False)


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the backoff delay for *attempt* given *config*."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


def retry_with_backoff(
    fn: Callable[[], T],
    config: RetryConfig,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, float, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute *fn* with synchronous retry and exponential backoff.

    Parameters
    ----------
    fn:
        A zero-argument callable to invoke.  On each retry the callable is
        invoked from scratch -- it must be safe to call repeatedly.
    config:
        Retry parameters (see :class:`RetryConfig`).
    retryable_exceptions:
        Only exceptions whose type appears in this tuple trigger a retry.
        All other exceptions propagate immediately.
    on_retry:
        Called as ``on_retry(attempt, delay, exc)`` before each wait, with a
        1-based attempt number.
    sleep:
        Blocking wait used between attempts.  Stages pass their context's
        deadline-aware sleep.

    Returns
    -------
    T
        The return value of *fn* on the first successful call.

    Raises
    ------
    Exception
        The last exception raised by *fn* after all retry attempts are
        exhausted.
    """
    last_exception: Exception | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return fn()
        except retryable_exceptions as exc:
            last_exception = exc
            if attempt >= config.max_retries:
                break
            delay = compute_delay(attempt, config)
            logger.debug(
                "Retry %d/%d after %.1fs: %s",
                attempt + 1,
                config.max_retries,
                delay,
                exc,
            )
            if on_retry is not None:
                on_retry(attempt + 1, delay, exc)
            sleep(delay)

    assert last_exception is not None  # noqa: S101
    raise last_exception
