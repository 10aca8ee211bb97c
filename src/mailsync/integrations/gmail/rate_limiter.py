"""Request pacing for the Gmail API."""

from __future__ import annotations

import asyncio
from time import monotonic


class RateLimiter:
    """Spaces out requests so a client never exceeds a fixed rate.

    One limiter is shared by every request a single account's client makes,
    including the concurrent fetches of a batch. Gmail's per-user quota is
    250 quota units per second; message gets cost 5 units, so the default
    of 10 requests per second leaves headroom for history and modify calls.

    Attributes:
        requests_per_second: Maximum requests allowed per second.
    """

    def __init__(self, requests_per_second: int = 10) -> None:
        """Initialize rate limiter.

        Args:
            requests_per_second: Maximum requests per second (default: 10).

        Raises:
            ValueError: If the rate is not positive.
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = requests_per_second
        self._interval = 1.0 / requests_per_second
        self._next_slot: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait for the next free request slot.

        Example:
            limiter = RateLimiter(requests_per_second=10)
            await limiter.acquire()
            await make_api_request()
        """
        async with self._lock:
            now = monotonic()
            wait_time = self._next_slot - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
                now = monotonic()
            self._next_slot = now + self._interval

    def reset(self) -> None:
        """Forget previous requests so the next one goes out immediately."""
        self._next_slot = 0.0

    @property
    def interval_seconds(self) -> float:
        """Minimum seconds between consecutive requests."""
        return self._interval
