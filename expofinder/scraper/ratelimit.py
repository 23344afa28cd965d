import asyncio
import time
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class MinIntervalLimiter:
    """Keep at least `min_interval` seconds between the end of one call and the start of the next.

    Use as `async with limiter: ...` around each call to the provider. The
    first call never waits.
    """

    def __init__(self, min_interval: float, name: str = "default",
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.min_interval = max(0.0, min_interval)
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._last_done: Optional[float] = None

    async def wait(self):
        if self._last_done is None:
            return
        delay = self.min_interval - (self._clock() - self._last_done)
        if delay > 0:
            logger.debug(f"[RATE] {self.name}: sleeping {delay:.2f}s")
            await self._sleep(delay)

    def mark(self):
        self._last_done = self._clock()

    def reset(self):
        self._last_done = None

    async def __aenter__(self) -> "MinIntervalLimiter":
        await self.wait()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.mark()
