"""
Retry backoff strategies and their tenacity adapters.

:func:`compute_backoff_delay` is the single source of truth for delays;
:class:`BackoffWait` plugs it into :func:`tenacity.retry` and honours a
``retry_after_ms`` hint carried by :class:`~connector_sdk.core.errors.RateLimitError`.
"""

from __future__ import annotations

import random
from enum import Enum
from typing import Callable, Optional

from tenacity import RetryCallState
from tenacity.wait import wait_base

from ..core.errors import ConnectorError, RateLimitError


class BackoffStrategy(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    FIBONACCI = "fibonacci"


def fibonacci(n: int) -> int:
    """Fibonacci growth factor: ``fib(n <= 1) = 1``, then 2, 3, 5, 8, ..."""

    previous, current = 1, 1
    for _ in range(max(n, 1) - 1):
        previous, current = current, previous + current
    return current


def compute_backoff_delay(
    attempt: int,
    *,
    strategy: BackoffStrategy | str = BackoffStrategy.EXPONENTIAL,
    base_delay_ms: float = 1000.0,
    max_delay_ms: float = 30000.0,
    jitter: bool = True,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Compute the delay before retry number ``attempt`` (1-based), in milliseconds.

    Parameters
    ----------
    attempt:
        Retry ordinal; values below 1 are treated as 1.
    strategy:
        ``linear`` (``base * attempt``), ``exponential`` (``base * 2^(attempt-1)``)
        or ``fibonacci`` (``base * fib(attempt)``).
    jitter:
        When enabled the delay is multiplied by a random factor in ``[0.5, 1.0)``.
    """

    attempt = max(int(attempt), 1)
    strategy = BackoffStrategy(strategy)
    if strategy is BackoffStrategy.LINEAR:
        delay = base_delay_ms * attempt
    elif strategy is BackoffStrategy.FIBONACCI:
        delay = base_delay_ms * fibonacci(attempt)
    else:
        delay = base_delay_ms * (2 ** (attempt - 1))
    if jitter:
        delay *= 0.5 + rng() * 0.5
    return min(delay, max_delay_ms)


class BackoffWait(wait_base):
    """tenacity ``wait`` strategy backed by :func:`compute_backoff_delay`."""

    def __init__(
        self,
        *,
        strategy: BackoffStrategy | str = BackoffStrategy.EXPONENTIAL,
        base_delay_ms: float = 1000.0,
        max_delay_ms: float = 30000.0,
        jitter: bool = True,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.strategy = BackoffStrategy(strategy)
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        hinted = _retry_after_ms(retry_state)
        if hinted is not None:
            return min(hinted, self.max_delay_ms) / 1000.0
        delay = compute_backoff_delay(
            retry_state.attempt_number,
            strategy=self.strategy,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter=self.jitter,
            rng=self.rng,
        )
        return delay / 1000.0


def _retry_after_ms(retry_state: RetryCallState) -> Optional[float]:
    outcome = retry_state.outcome
    if outcome is None or not outcome.failed:
        return None
    error = outcome.exception()
    if isinstance(error, RateLimitError) and error.retry_after_ms is not None:
        return float(error.retry_after_ms)
    return None


def is_retryable_exception(error: BaseException) -> bool:
    """Predicate for ``tenacity.retry_if_exception`` limited to retryable connector errors."""

    return isinstance(error, ConnectorError) and error.retryable
