"""
Fixed-interval rate limiter for sequential provider calls.

A token bucket holding a single token that refills once per interval: the
first call passes immediately, every later call waits until the interval
has elapsed since the previous grant.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Optional

import structlog

logger = structlog.get_logger()


class FixedIntervalRateLimiter:
    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self.interval = interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._last_grant: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until the single token has refilled, then take it."""
        async with self._lock:
            if self._last_grant is not None:
                elapsed = max(0.0, self._clock() - self._last_grant)
                wait_time = self.interval - elapsed
                if wait_time > 0:
                    logger.debug(
                        "rate_limit_waiting", wait_seconds=round(wait_time, 3)
                    )
                    await self._sleep(wait_time)
            self._last_grant = self._clock()

    def reset(self) -> None:
        self._last_grant = None
