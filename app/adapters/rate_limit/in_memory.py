"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Windows are anchored at each key's first request, not at wall-clock
  boundaries.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult


@dataclass
class RateLimitEntry:
    count: int
    reset_at: int  # epoch ms


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting requests per key inside a fixed window.

    The first request from a key opens a window of ``window_ms`` milliseconds.
    Up to ``max_requests`` requests are allowed inside it; later ones are
    rejected until the window ends, at which point the next request opens a
    fresh window with a count of one.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        max_requests: int = 10,
        window_ms: int = 60000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            max_requests: Maximum number of allowed requests per window.
            window_ms: Size of the fixed window in milliseconds.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If max_requests or window_ms are invalid.
        """
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        self._max_requests = max_requests
        self._window_ms = window_ms
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, RateLimitEntry] = {}

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_entry(self, key: str) -> RateLimitEntry | None:
        """Return a copy of the stored entry for ``key`` (for inspection)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            return RateLimitEntry(count=entry.count, reset_at=entry.reset_at)

    def _build_allowed_result(self, *, remaining: int, reset_at: int) -> RateLimitResult:
        """Build a RateLimitResult for an allowed request."""
        return RateLimitResult(
            allowed=True,
            limit=self._max_requests,
            remaining=remaining,
            reset_at=reset_at,
            retry_after_seconds=None,
        )

    def _build_blocked_result(self, *, now_ms: int, reset_at: int) -> RateLimitResult:
        """Build a RateLimitResult for a blocked request."""
        retry_after = max(0, int(math.ceil((reset_at - now_ms) / 1000)))
        return RateLimitResult(
            allowed=False,
            limit=self._max_requests,
            remaining=0,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
        )

    def consume(self, key: str) -> RateLimitResult:
        """Count one request for ``key``.

        Args:
            key: Unique identifier for rate limiting (e.g., client IP).

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now_ms = _now_ms(self._clock)

        with self._lock:
            entry = self._entries.get(key)

            if entry is None or now_ms > entry.reset_at:
                entry = RateLimitEntry(count=1, reset_at=now_ms + self._window_ms)
                self._entries[key] = entry
                return self._build_allowed_result(
                    remaining=self._max_requests - 1,
                    reset_at=entry.reset_at,
                )

            if entry.count >= self._max_requests:
                return self._build_blocked_result(now_ms=now_ms, reset_at=entry.reset_at)

            entry.count += 1
            return self._build_allowed_result(
                remaining=self._max_requests - entry.count,
                reset_at=entry.reset_at,
            )

    def sweep(self) -> int:
        """Remove entries whose window has ended.

        Stale entries would reset on their next access anyway; sweeping only
        bounds memory held for clients that never come back.
        """
        now_ms = _now_ms(self._clock)
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now_ms > entry.reset_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        """Drop all state."""
        with self._lock:
            self._entries.clear()
