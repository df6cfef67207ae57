"""Injectable time sources.

Retry, timeout, circuit breaker and rate shaping logic read time and sleep
through a ``Clock`` so they can be driven deterministically in tests.

Example:
    clock = ManualClock()
    task = asyncio.ensure_future(retry_with_backoff(op, config, clock=clock))
    await clock.advance(5.0)  # fires every backoff sleep due within 5s
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of monotonic time and sleeping."""

    def monotonic(self) -> float: ...

    async def sleep(self, delay: float) -> None: ...


class SystemClock:
    """Wall-clock implementation backed by the running event loop."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


SYSTEM_CLOCK = SystemClock()


class ManualClock:
    """Virtual clock that only moves when told to.

    Sleepers park on futures ordered by deadline; ``advance`` wakes them one
    at a time, letting the event loop run between wake-ups so that follow-up
    sleeps registered by woken code are honoured within the same advance.
    """

    def __init__(self, start: float = 0.0, settle_iterations: int = 25):
        self._now = start
        self._settle_iterations = settle_iterations
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    def monotonic(self) -> float:
        return self._now

    @property
    def pending_sleepers(self) -> int:
        """Number of sleepers still waiting."""
        return len(self._sleepers)

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry = (self._now + delay, next(self._seq), future)
        heapq.heappush(self._sleepers, entry)
        try:
            await future
        except asyncio.CancelledError:
            if entry in self._sleepers:
                self._sleepers.remove(entry)
                heapq.heapify(self._sleepers)
            raise

    async def settle(self) -> None:
        """Yield to the event loop until ready callbacks have run."""
        for _ in range(self._settle_iterations):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking every sleeper whose deadline passes."""
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        await self.settle()
        target = self._now + seconds
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
                await self.settle()
        self._now = target
        await self.settle()
