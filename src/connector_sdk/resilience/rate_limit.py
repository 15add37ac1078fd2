"""
Sliding-window rate limiter used by HTTP-backed connectors.

The limiter keeps one timestamp deque per configured window (second, minute,
hour, day). Before each call it computes the longest wait demanded by any full
window, suspends the caller for that long and only then records the request.
Callers are delayed, never rejected.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

WINDOWS_SECONDS: Dict[str, float] = {
    "second": 1.0,
    "minute": 60.0,
    "hour": 3600.0,
    "day": 86400.0,
}


@dataclass(slots=True)
class RateLimits:
    """Maximum number of requests allowed per window; ``None`` disables a window."""

    requests_per_second: Optional[int] = None
    requests_per_minute: Optional[int] = None
    requests_per_hour: Optional[int] = None
    requests_per_day: Optional[int] = None

    def as_windows(self) -> Dict[str, int]:
        limits = {
            "second": self.requests_per_second,
            "minute": self.requests_per_minute,
            "hour": self.requests_per_hour,
            "day": self.requests_per_day,
        }
        return {name: int(limit) for name, limit in limits.items() if limit}


class RateLimiter:
    """
    Blocking sliding-window limiter.

    Parameters
    ----------
    limits:
        Per-window request budgets.
    clock:
        Monotonic time source in seconds. Injected by tests.
    sleep:
        Function used to suspend the caller. Injected by tests.
    """

    def __init__(
        self,
        limits: RateLimits,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._limits = limits.as_windows()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._history: Dict[str, Deque[float]] = {name: deque() for name in self._limits}
        self.total_wait_seconds = 0.0

    def _prune(self, now: float) -> None:
        for name, stamps in self._history.items():
            horizon = now - WINDOWS_SECONDS[name]
            while stamps and stamps[0] <= horizon:
                stamps.popleft()

    def required_wait(self, now: Optional[float] = None) -> float:
        """Return the seconds to wait before another request may be issued."""

        with self._lock:
            current = self._clock() if now is None else now
            return self._required_wait_locked(current)

    def _required_wait_locked(self, now: float) -> float:
        self._prune(now)
        wait = 0.0
        for name, limit in self._limits.items():
            stamps = self._history[name]
            if len(stamps) >= limit:
                oldest_relevant = stamps[len(stamps) - limit]
                wait = max(wait, WINDOWS_SECONDS[name] - (now - oldest_relevant))
        return max(wait, 0.0)

    def acquire(self) -> float:
        """
        Block until every window has capacity, then record the request.

        Returns the total number of seconds the caller was delayed.
        """

        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                wait = self._required_wait_locked(now)
                if wait <= 0:
                    for stamps in self._history.values():
                        stamps.append(now)
                    self.total_wait_seconds += waited
                    return waited
            self._sleep(wait)
            waited += wait

    def reset(self) -> None:
        with self._lock:
            for stamps in self._history.values():
                stamps.clear()

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        """Return current usage per window, for metrics output."""

        with self._lock:
            self._prune(self._clock())
            return {name: {"used": len(self._history[name]), "limit": limit} for name, limit in self._limits.items()}
