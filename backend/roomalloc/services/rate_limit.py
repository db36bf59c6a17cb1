from __future__ import annotations

from collections import defaultdict, deque
import logging
from threading import Lock
import time
from typing import Callable, Deque

logger = logging.getLogger(__name__)


class InMemoryRateLimiter:
    """Sliding-window limiter. Outbound clients call :meth:`acquire`, which blocks until a slot is free."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._buckets: dict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()
        self._clock = clock
        self._sleep = sleep

    def check(self, *, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        now = self._clock()
        earliest = now - window_seconds
        retry_after = 1
        with self._lock:
            bucket = self._buckets[key]
            while bucket and bucket[0] <= earliest:
                bucket.popleft()
            if len(bucket) >= limit:
                retry_after = max(1, int(bucket[0] + window_seconds - now) + 1)
                return False, retry_after
            bucket.append(now)
        return True, retry_after

    def acquire(self, *, key: str, limit: int, window_seconds: int) -> float:
        """Wait for a free slot in the window; returns the seconds spent waiting."""
        waited = 0.0
        while True:
            allowed, retry_after = self.check(key=key, limit=limit, window_seconds=window_seconds)
            if allowed:
                return waited
            logger.warning(
                "RATE LIMIT REACHED | key=%s | limit=%s | window_seconds=%s | sleep_seconds=%s",
                key,
                limit,
                window_seconds,
                retry_after,
            )
            self._sleep(retry_after)
            waited += retry_after

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = InMemoryRateLimiter()


def get_rate_limiter() -> InMemoryRateLimiter:
    return _limiter


def clear_rate_limiter() -> None:
    _limiter.clear()
