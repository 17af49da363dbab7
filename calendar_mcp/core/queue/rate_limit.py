"""
Per-queue job start limiter (sliding window).

Every job start consumes a slot, first attempts and retries alike, so a
failing job can never be retried faster than the queue admits new work.
"""

from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from calendar_mcp.models.domain.job_domain import RateLimit


class SlidingWindowLimiter:
    def __init__(self, limit: RateLimit, clock: Callable[[], datetime] | None = None):
        self.limit = limit
        self._window = timedelta(milliseconds=limit.duration_ms)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._starts: deque[datetime] = deque()

    def _evict(self, now: datetime) -> None:
        while self._starts and now - self._starts[0] >= self._window:
            self._starts.popleft()

    def try_acquire(self) -> bool:
        """Take a slot if one is free in the current window."""
        now = self._clock()
        self._evict(now)
        if len(self._starts) >= self.limit.max_jobs:
            return False
        self._starts.append(now)
        return True

    def retry_after_seconds(self) -> float:
        now = self._clock()
        self._evict(now)
        if len(self._starts) < self.limit.max_jobs:
            return 0.0
        return max((self._starts[0] + self._window - now).total_seconds(), 0.0)
