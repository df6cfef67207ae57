"""Batch processing with partial-failure handling.

Example:
    async def fetch_page(url, index):
        return await client.get(url)

    results = await batch_process(urls, fetch_page, batch_size=20)
    failed = [r for r in results if isinstance(r, Exception)]
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from animus_resilience.events import EventSink, emit_event
from animus_resilience.pool import TaskPool

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def batch_process(
    items: Iterable[T],
    operation: Callable[[T, int], Awaitable[R]],
    *,
    batch_size: int | None = None,
    concurrency: int | None = None,
    stop_on_error: bool = False,
    on_item_error: Callable[[Exception, T, int], None] | None = None,
    sink: EventSink | None = None,
) -> list[R | Exception]:
    """Apply an operation to every item, batch by batch.

    Batches run one after another; items within a batch run concurrently
    through a ``TaskPool``.

    Args:
        items: Inputs to process
        operation: Async callable applied to each (item, index)
        batch_size: Items per batch (defaults to all items in one batch)
        concurrency: Max items running at once within a batch
            (defaults to the batch size)
        stop_on_error: Raise the first failure instead of recording it
        on_item_error: Called with (error, item, index) for each failure
        sink: Optional event sink

    Returns:
        One slot per input, in input order, holding a result or the exception

    Raises:
        Exception: The first observed item failure when ``stop_on_error``
            is set. Queued items in the same batch are abandoned, siblings
            already running are awaited, later batches are never started.
    """
    items = list(items)
    if batch_size is not None and batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    if concurrency is not None and concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    if not items:
        return []

    size = batch_size or len(items)
    results: list[Any] = [None] * len(items)

    for start in range(0, len(items), size):
        batch = items[start : start + size]
        failures: list[tuple[int, Exception]] = []
        started: set[int] = set()
        futures: dict[int, asyncio.Future[None]] = {}

        async def process(index: int, item: T) -> None:
            if futures[index].cancelled():
                return
            started.add(index)
            try:
                results[index] = await operation(item, index)
            except Exception as exc:
                results[index] = exc
                failures.append((index, exc))
                if stop_on_error:
                    # Abandon queued items; running siblings finish on their own
                    for other, future in futures.items():
                        if other not in started:
                            future.cancel()

        pool = TaskPool(concurrency or len(batch), name="batch")
        for offset, item in enumerate(batch):
            index = start + offset
            futures[index] = pool.add(lambda i=index, it=item: process(i, it))

        try:
            await pool.drain()
        except asyncio.CancelledError:
            for future in futures.values():
                future.cancel()
            raise

        for index, exc in failures:
            logger.debug("Batch item %d failed: %s", index, exc)
            emit_event(sink, "batch.item_failed", {"index": index, "error": repr(exc)})
            if on_item_error:
                on_item_error(exc, items[index], index)

        if stop_on_error and failures:
            index, exc = failures[0]
            logger.warning("Batch stopped at item %d of %d: %s", index, len(items), exc)
            raise exc

    return results
