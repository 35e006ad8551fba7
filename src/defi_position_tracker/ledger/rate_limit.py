"""Minimum-interval rate limiter for ledger requests."""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Enforces a minimum interval between request dispatches.

    The last dispatch time is process-local; a fresh limiter starts with
    no history, so the first ``acquire`` never waits.
    """

    def __init__(self, min_interval_seconds: float) -> None:
        """Initialize the rate limiter.

        Args:
            min_interval_seconds: Minimum seconds between two dispatches.
        """
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        self._min_interval = min_interval_seconds
        self._last_request_time: float | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def per_second(cls, max_requests_per_second: float) -> RateLimiter:
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second must be > 0")
        return cls(1.0 / max_requests_per_second)

    @classmethod
    def from_milliseconds(cls, delay_ms: int) -> RateLimiter:
        return cls(delay_ms / 1000.0)

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            if self._last_request_time is not None:
                elapsed = time.monotonic() - self._last_request_time
                if elapsed < self._min_interval:
                    await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()
