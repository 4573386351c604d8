"""Fixed-interval gate that spaces out Stripe calls within a batch."""
import asyncio
import time
from typing import Awaitable, Callable, Optional


class FixedIntervalGate:
    """
    Guarantees at least `interval` seconds between consecutive releases.

    Batch loops call `await gate.wait()` after each item. The first call
    only records the time; later calls sleep for whatever is left of the
    interval since the previous release.

    Args:
        interval: Minimum spacing in seconds. 0 disables waiting.
        sleep: Coroutine used to wait (inject a fake in tests).
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        interval: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._sleep = sleep
        self._clock = clock
        self._last_release: Optional[float] = None

    async def wait(self) -> None:
        now = self._clock()
        if self._last_release is not None and self.interval > 0:
            remaining = self.interval - (now - self._last_release)
            if remaining > 0:
                await self._sleep(remaining)
                now = self._clock()
        self._last_release = now
