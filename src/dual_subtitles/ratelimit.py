from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

log = logging.getLogger("dual_subtitles.ratelimit")


class RateLimiter:
    """Fixed-window request budget for outbound provider calls.

    Up to ``max_requests`` calls start per ``window`` seconds; further callers
    wait, in arrival order, for the next window. One instance is shared by
    every request that talks to the same provider.
    """

    def __init__(
        self,
        max_requests: int = 40,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self._max = max_requests
        self._window = window
        self._clock = clock
        self._sleep = sleep
        self._lock: Optional[asyncio.Lock] = None
        self._window_start = clock()
        self._count = 0
        self.waits = 0

    @property
    def remaining(self) -> int:
        self._roll()
        return max(0, self._max - self._count)

    def _roll(self) -> None:
        now = self._clock()
        if now - self._window_start >= self._window:
            self._window_start = now
            self._count = 0

    async def acquire(self) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            while True:
                self._roll()
                if self._count < self._max:
                    self._count += 1
                    return
                delay = self._window - (self._clock() - self._window_start)
                self.waits += 1
                log.info("Rate limit reached (%s/window). Waiting %.1fs", self._max, delay)
                await self._sleep(max(delay, 0.0))

    async def run(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        await self.acquire()
        return await fn(*args, **kwargs)
