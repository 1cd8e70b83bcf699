"""
Rate Limiter
------------
Admission queue for outbound API calls.

Two limits hold at the same time:
- at most `max_concurrent` calls in flight
- at most `max_requests` admissions in any rolling `interval_seconds` window

Admission is FIFO. A burst of submissions is drip-fed into the window
rather than released at once. Completion order is not constrained.
"""

from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional
import asyncio
import logging
import time


@dataclass
class RateLimitConfig:
    """Rate limit configuration."""
    max_requests: int = 5           # Admissions per window
    interval_seconds: float = 1.0
    max_concurrent: Optional[int] = None  # Defaults to max_requests

    @property
    def concurrency(self) -> int:
        return self.max_concurrent or self.max_requests


class RateLimiter:
    """
    Rolling-window rate limiter with a concurrency cap.

    Use as an async context manager around exactly one outbound request:

        async with limiter:
            response = await client.request(...)

    The limiter is the only shared mutable state of the dispatcher and is
    only touched from the event loop.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._admissions: Deque[float] = deque()
        self._slots = asyncio.Semaphore(self.config.concurrency)
        self._window_lock = asyncio.Lock()
        self._logger = logging.getLogger("meraki.api.rate_limiter")

    async def acquire(self) -> None:
        """
        Queue on the lock, then wait for a concurrency slot and for room in
        the rolling window.

        Waiters are served in arrival order. Only the head of the lock queue
        ever waits on the semaphore, so a late caller cannot take a freed
        slot ahead of earlier ones.
        """
        async with self._window_lock:
            await self._slots.acquire()
            try:
                while True:
                    now = self._clock()
                    self._expire(now)

                    if len(self._admissions) < self.config.max_requests:
                        self._admissions.append(now)
                        return

                    wait = self._admissions[0] + self.config.interval_seconds - now
                    self._logger.debug(f"Rate window full, waiting {wait:.3f}s")
                    await asyncio.sleep(max(wait, 0.0))
            except BaseException:
                self._slots.release()
                raise

    def release(self) -> None:
        """Free the concurrency slot taken by acquire()."""
        self._slots.release()

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.release()

    def _expire(self, now: float) -> None:
        """Drop admissions that left the rolling window."""
        horizon = now - self.config.interval_seconds
        while self._admissions and self._admissions[0] <= horizon:
            self._admissions.popleft()

    @property
    def available_slots(self) -> int:
        """Admissions the window would accept right now."""
        self._expire(self._clock())
        return max(self.config.max_requests - len(self._admissions), 0)

    def reset(self) -> None:
        """Forget past admissions. In-flight calls keep their slots."""
        self._admissions.clear()
