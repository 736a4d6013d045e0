# demand_replenishment/batch/rate_limiter.py
import asyncio
import time
from collections import deque
from typing import Awaitable, Callable


class SlidingWindowRateLimiter:
    """Allow at most ``max_calls`` acquisitions in any ``period`` seconds."""

    def __init__(
        self,
        max_calls: int,
        period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep
    ):
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self.max_calls = max_calls
        self.period = period
        self.clock = clock
        self.sleep = sleep
        self._calls = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float):
        while self._calls and now - self._calls[0] >= self.period:
            self._calls.popleft()

    async def acquire(self):
        """Wait until a slot in the window is free, then take it."""
        async with self._lock:
            while True:
                now = self.clock()
                self._evict(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                await self.sleep(self.period - (now - self._calls[0]))

    @property
    def in_window(self) -> int:
        self._evict(self.clock())
        return len(self._calls)
