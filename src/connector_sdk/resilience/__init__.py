"""
Resilience helpers composed by connectors: connection pooling, sliding-window
rate limiting and retry backoff.
"""

from .backoff import BackoffStrategy, BackoffWait, compute_backoff_delay, fibonacci, is_retryable_exception
from .pool import ConnectionPool, PoolSettings, PoolStats
from .rate_limit import RateLimiter, RateLimits

__all__ = [
    "BackoffStrategy",
    "BackoffWait",
    "ConnectionPool",
    "PoolSettings",
    "PoolStats",
    "RateLimiter",
    "RateLimits",
    "compute_backoff_delay",
    "fibonacci",
    "is_retryable_exception",
]
