"""
Token bucket rate limiting for the scan pipeline
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Marks the end of a stream flowing between pipeline stages
END_OF_STREAM = None


async def wait_or_cancel(aw: Awaitable[Any], cancel: Optional[asyncio.Event]):
    """
    Await ``aw`` unless ``cancel`` fires first.

    Returns ``(True, result)`` when the awaitable finished, ``(False, None)``
    when cancellation won. The losing side is cancelled.
    """
    if cancel is None:
        return True, await aw
    if cancel.is_set():
        if asyncio.iscoroutine(aw):
            aw.close()
        return False, None

    work = asyncio.ensure_future(aw)
    stop = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop.cancel()
        if not work.done():
            work.cancel()

    if cancel.is_set():
        return False, None
    return True, work.result()


class TokenBucket:
    """
    Token bucket limiter.

    Tokens accumulate at ``rate`` per second up to ``burst`` and each
    permitted attempt consumes one. The bucket starts full. Waiters are
    serialized so concurrent callers are granted tokens one at a time.
    """

    def __init__(self, rate: float, burst: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if burst is None:
            burst = max(1, int(rate))
        if burst < 1:
            raise ValueError(f"burst must be at least 1, got {burst}")

        self.rate = float(rate)
        self.burst = burst
        self.tokens = float(burst)
        self._clock = clock
        self._sleep = sleep
        self._last = clock()
        self._lock = asyncio.Lock()

    def _refill(self):
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self.tokens = min(self.tokens + elapsed * self.rate, float(self.burst))
        self._last = now

    def try_acquire(self) -> bool:
        """Take a token if one is available right now"""
        self._refill()
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    def delay(self) -> float:
        """Seconds until the next token is available"""
        self._refill()
        if self.tokens >= 1:
            return 0.0
        return (1 - self.tokens) / self.rate

    async def acquire(self, cancel: Optional[asyncio.Event] = None) -> bool:
        """Wait for a token. Returns False if cancelled while waiting."""
        async with self._lock:
            if self.try_acquire():
                return True

            waited, _ = await wait_or_cancel(self._sleep(self.delay()), cancel)
            if not waited:
                return False

            # The sleep covered the deficit, float rounding may leave the
            # count a hair under one token
            self._refill()
            self.tokens = max(0.0, self.tokens - 1)
            return True


async def rate_limit_stage(source: asyncio.Queue, sink: asyncio.Queue,
                           limiter: TokenBucket, cancel: asyncio.Event) -> int:
    """
    Forward units from ``source`` to ``sink`` at most as fast as ``limiter``
    allows. Stops at end of stream or on cancellation. Returns the number of
    units forwarded.
    """
    forwarded = 0
    while True:
        received, unit = await wait_or_cancel(source.get(), cancel)
        if not received:
            logger.debug("Rate limiter cancelled while waiting for input")
            return forwarded
        if unit is END_OF_STREAM:
            break

        if not await limiter.acquire(cancel):
            logger.debug(f"Rate limiter cancelled, dropping unit for {unit.host}")
            return forwarded

        await sink.put(unit)
        forwarded += 1

    # A single marker is enough, workers put it back for each other
    await sink.put(END_OF_STREAM)
    logger.debug(f"Rate limiter forwarded {forwarded} units")
    return forwarded
