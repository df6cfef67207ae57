"""Bounded-concurrency task pool.

Runs at most ``concurrency`` operations at once and starts queued work in
submission order as slots free up.

Example:
    pool = TaskPool(concurrency=5)
    futures = [pool.add(lambda u=url: fetch(u)) for url in urls]
    pages = await asyncio.gather(*futures)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from animus_resilience.events import EventSink, emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PoolTask(Generic[T]):
    """A queued operation and the future that carries its outcome."""

    operation: Callable[[], Awaitable[T]]
    future: asyncio.Future[T]
    settled: bool = False


@dataclass
class PoolStats:
    """Statistics for a task pool."""

    name: str
    concurrency: int
    active_count: int
    queued_count: int
    peak_active: int
    total_started: int
    total_completed: int
    total_failed: int


class TaskPool:
    """FIFO queue in front of a fixed number of execution slots."""

    def __init__(
        self,
        concurrency: int = 10,
        *,
        name: str = "",
        sink: EventSink | None = None,
    ):
        """Initialize task pool.

        Args:
            concurrency: Maximum operations running at once
            name: Identifier for logs and stats
            sink: Optional event sink
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.concurrency = concurrency
        self.name = name
        self._sink = sink

        self._queue: deque[PoolTask[Any]] = deque()
        self._pending: set[asyncio.Future[Any]] = set()
        self._runners: set[asyncio.Task[None]] = set()
        self._active = 0

        # Stats
        self._peak = 0
        self._total_started = 0
        self._total_completed = 0
        self._total_failed = 0

    @property
    def active_count(self) -> int:
        """Operations started but not yet settled."""
        return self._active

    @property
    def queued_count(self) -> int:
        return sum(1 for task in self._queue if not task.future.done())

    def add(self, operation: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Queue an operation.

        Must be called from a running event loop.

        Returns:
            Future settling with the operation's result or exception
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.append(PoolTask(operation, future))
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        self._dispatch()
        return future

    def _dispatch(self) -> None:
        """Start queued tasks while slots are free."""
        while self._active < self.concurrency and self._queue:
            task = self._queue.popleft()
            if task.future.done():
                # Cancelled by the caller while still queued
                continue

            self._active += 1
            self._total_started += 1
            self._peak = max(self._peak, self._active)

            runner = asyncio.ensure_future(self._run(task))
            self._runners.add(runner)
            runner.add_done_callback(lambda r, t=task: self._on_runner_done(r, t))
            task.future.add_done_callback(
                lambda fut, r=runner: r.cancel() if fut.cancelled() else None
            )

    async def _run(self, task: PoolTask[Any]) -> None:
        try:
            result = await task.operation()
        except asyncio.CancelledError:
            if not task.future.done():
                task.future.cancel()
            raise
        except Exception as exc:
            self._total_failed += 1
            logger.debug("Pool '%s' task failed: %s", self.name, exc)
            if not task.future.done():
                task.future.set_exception(exc)
        else:
            self._total_completed += 1
            if not task.future.done():
                task.future.set_result(result)
        finally:
            self._settle(task)

    def _on_runner_done(self, runner: asyncio.Task[None], task: PoolTask[Any]) -> None:
        self._runners.discard(runner)
        # A runner cancelled before its first step never reaches _run's finally
        if not task.future.done():
            task.future.cancel()
        self._settle(task)

    def _settle(self, task: PoolTask[Any]) -> None:
        """Free the task's slot exactly once and start the next queued task."""
        if task.settled:
            return
        task.settled = True
        self._active -= 1
        emit_event(
            self._sink,
            "pool.task_settled",
            {"pool": self.name, "active": self._active, "queued": len(self._queue)},
        )
        self._dispatch()

    async def drain(self) -> None:
        """Wait until every task queued or active right now has settled.

        Tasks added after this call are not awaited.
        """
        pending = list(self._pending)
        if pending:
            await asyncio.wait(pending)

    def get_stats(self) -> PoolStats:
        """Get pool statistics."""
        return PoolStats(
            name=self.name,
            concurrency=self.concurrency,
            active_count=self._active,
            queued_count=self.queued_count,
            peak_active=self._peak,
            total_started=self._total_started,
            total_completed=self._total_completed,
            total_failed=self._total_failed,
        )
