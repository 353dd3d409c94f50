"""Token-bucket admission control for outbound calls."""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from ai_signals.utils.logging import get_logger, log_rate_limit

_LOW_QUOTA_RATIO = 0.2


@dataclass(frozen=True, slots=True)
class RateLimitStatus:
    remaining: int
    capacity: int
    reset_at: datetime


class RateLimiter:
    """Token bucket with capacity ``C`` refilled linearly at ``C / window``.

    One instance per external service class; quotas of different services
    are unrelated and must not share a bucket. Waiters are served in arrival
    order and poll for a token every ``poll_interval`` seconds.
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        window_seconds: float,
        *,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.name = name
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._tokens = capacity
        self._last_refill = clock()
        self._lock = asyncio.Lock()
        self._logger = get_logger("ai_signals.utils.rate_limiter")

    @classmethod
    def for_exchange_api(cls, capacity: int = 60, window_seconds: float = 60.0) -> RateLimiter:
        return cls("exchange", capacity, window_seconds)

    @classmethod
    def for_ai_api(
        cls, name: str = "ai", capacity: int = 30, window_seconds: float = 60.0
    ) -> RateLimiter:
        return cls(name, capacity, window_seconds)

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            while not self._try_consume():
                await self._sleep(self._poll_interval)

        if self._tokens < self.capacity * _LOW_QUOTA_RATIO:
            status = self.status()
            log_rate_limit(
                self._logger,
                service=self.name,
                remaining=status.remaining,
                capacity=status.capacity,
                reset_at=status.reset_at.isoformat(),
            )

    def status(self) -> RateLimitStatus:
        self._refill()
        missing = self.capacity - self._tokens
        seconds_to_full = missing * self.window_seconds / self.capacity
        return RateLimitStatus(
            remaining=self._tokens,
            capacity=self.capacity,
            reset_at=datetime.now(UTC) + timedelta(seconds=seconds_to_full),
        )

    def _try_consume(self) -> bool:
        self._refill()
        if self._tokens > 0:
            self._tokens -= 1
            return True
        return False

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        added = math.floor(elapsed / self.window_seconds * self.capacity)
        if added > 0:
            self._tokens = min(self.capacity, self._tokens + added)
            self._last_refill = now
