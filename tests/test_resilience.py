from __future__ import annotations

from typing import List

import pytest
from tenacity import Retrying, retry_if_exception, stop_after_attempt

from connector_sdk.core.errors import ConnectorConnectionError, PoolExhaustedError, RateLimitError, ValidationError
from connector_sdk.resilience import (
    BackoffStrategy,
    BackoffWait,
    ConnectionPool,
    PoolSettings,
    RateLimiter,
    RateLimits,
    compute_backoff_delay,
    fibonacci,
    is_retryable_exception,
)


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_fibonacci_sequence():
    assert [fibonacci(n) for n in range(0, 7)] == [1, 1, 2, 3, 5, 8, 13]


@pytest.mark.parametrize(
    ("strategy", "expected"),
    [
        (BackoffStrategy.LINEAR, [100, 200, 300, 400]),
        (BackoffStrategy.EXPONENTIAL, [100, 200, 400, 800]),
        (BackoffStrategy.FIBONACCI, [100, 200, 300, 500]),
    ],
)
def test_backoff_strategies(strategy, expected):
    delays = [compute_backoff_delay(n, strategy=strategy, base_delay_ms=100, jitter=False) for n in range(1, 5)]

    assert delays == expected


def test_backoff_is_capped_and_jittered():
    assert compute_backoff_delay(10, base_delay_ms=1000, max_delay_ms=5000, jitter=False) == 5000
    assert compute_backoff_delay(0, strategy="linear", base_delay_ms=250, jitter=False) == 250
    assert compute_backoff_delay(3, base_delay_ms=100, jitter=True, rng=lambda: 0.0) == 200
    assert compute_backoff_delay(3, base_delay_ms=100, jitter=True, rng=lambda: 0.5) == 300


def test_retry_predicate_follows_retryable_flag():
    assert is_retryable_exception(ConnectorConnectionError("reset"))
    assert is_retryable_exception(RateLimitError())
    assert not is_retryable_exception(ValidationError("bad input"))
    assert not is_retryable_exception(ConnectionResetError())


def test_backoff_wait_prefers_retry_after_hint():
    sleeps: List[float] = []
    failures = [RateLimitError(retry_after_ms=2500), ConnectorConnectionError("reset")]

    def flaky() -> str:
        if failures:
            raise failures.pop(0)
        return "ok"

    retrying = Retrying(
        retry=retry_if_exception(is_retryable_exception),
        wait=BackoffWait(strategy="linear", base_delay_ms=100, max_delay_ms=10000, jitter=False),
        stop=stop_after_attempt(5),
        sleep=sleeps.append,
        reraise=True,
    )

    assert retrying(flaky) == "ok"
    assert sleeps == [2.5, 0.2]


def test_rate_limiter_delays_instead_of_rejecting():
    time = FakeTime()
    limiter = RateLimiter(RateLimits(requests_per_second=2, requests_per_minute=3), clock=time.clock, sleep=time.sleep)

    waits = [limiter.acquire() for _ in range(4)]

    assert waits[:2] == [0.0, 0.0]
    assert waits[2] == 1.0
    assert waits[3] == 59.0
    assert limiter.total_wait_seconds == 60.0
    assert limiter.snapshot() == {"second": {"used": 1, "limit": 2}, "minute": {"used": 2, "limit": 3}}


def test_rate_limiter_reset_and_required_wait():
    time = FakeTime()
    limiter = RateLimiter(RateLimits(requests_per_second=1), clock=time.clock, sleep=time.sleep)

    limiter.acquire()
    assert limiter.required_wait() == 1.0
    assert limiter.required_wait(now=0.4) == pytest.approx(0.6)

    limiter.reset()
    assert limiter.required_wait() == 0.0


def test_unlimited_rate_limiter_never_sleeps():
    time = FakeTime()
    limiter = RateLimiter(RateLimits(), clock=time.clock, sleep=time.sleep)

    for _ in range(50):
        limiter.acquire()

    assert time.sleeps == []
    assert limiter.snapshot() == {}


@pytest.fixture()
def pool(tmp_path):
    pool = ConnectionPool(f"sqlite:///{tmp_path / 'pool.db'}", PoolSettings(min_size=1, max_size=2, acquire_timeout_ms=100))
    pool.initialize()
    yield pool
    pool.clear()


def test_pool_prewarms_and_tracks_checkouts(pool):
    assert pool.get_stats().to_dict() == {"total": 1, "idle": 1, "active": 0, "pending": 0, "max": 2, "min": 1}

    with pool.connection():
        stats = pool.get_stats()
        assert stats.active == 1
        assert stats.idle == 0

    assert pool.get_stats().active == 0


def test_pool_exhaustion_is_reported(pool):
    first = pool.acquire()
    second = pool.acquire()
    try:
        with pytest.raises(PoolExhaustedError):
            pool.acquire()
    finally:
        pool.release(first)
        pool.destroy(second)

    assert pool.get_stats().active == 0


def test_pool_requires_initialisation(tmp_path):
    pool = ConnectionPool(f"sqlite:///{tmp_path / 'lazy.db'}")

    assert not pool.is_initialized
    with pytest.raises(ConnectorConnectionError, match="not initialised"):
        pool.acquire()
