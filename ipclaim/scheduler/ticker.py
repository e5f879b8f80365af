"""Periodic tick source for the node monitor."""

import asyncio
import time
from typing import Optional


class Ticker:
    """
    Async iterator yielding one monotonic timestamp per interval.

    Ticks are scheduled on fixed deadlines (start + n * interval) on the
    event loop clock, so the time a consumer spends between ticks does not
    push later ticks back. Deadlines that passed while the consumer was
    busy are skipped rather than delivered in a burst, so ticks never
    queue up or overlap. Iteration ends as soon as the stop event is set.
    """

    def __init__(self, interval_s: float, stop: Optional[asyncio.Event] = None):
        """
        Initialize ticker.

        Args:
            interval_s: Seconds between ticks
            stop: Event ending the iteration
        """
        if interval_s <= 0:
            raise ValueError(f"interval must be positive, got {interval_s}")

        self.interval_s = interval_s
        self.stop = stop or asyncio.Event()
        self._deadline: Optional[float] = None

    def __aiter__(self) -> "Ticker":
        return self

    async def __anext__(self) -> float:
        if self.stop.is_set():
            raise StopAsyncIteration

        loop = asyncio.get_running_loop()
        if self._deadline is None:
            self._deadline = loop.time() + self.interval_s

        timeout = self._deadline - loop.time()
        if timeout > 0:
            try:
                await asyncio.wait_for(self.stop.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

        if self.stop.is_set():
            raise StopAsyncIteration

        now = loop.time()
        missed = max(0, int((now - self._deadline) // self.interval_s))
        self._deadline += (missed + 1) * self.interval_s

        return time.monotonic()
