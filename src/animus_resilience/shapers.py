"""Debounce and throttle wrappers for async functions.

Calls that are discarded (superseded by debounce, dropped by throttle)
resolve to ``None`` without invoking the wrapped function.

Example:
    save = debounce_async(persist_draft, 0.5)
    await save(draft)  # only the last call in any 0.5s window persists

    ping = throttle_async(send_heartbeat, 10.0)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from animus_resilience.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


def debounce_async(
    fn: Callable[..., Awaitable[T]],
    delay: float,
    *,
    clock: Clock | None = None,
) -> Callable[..., Awaitable[T | None]]:
    """Invoke ``fn`` only for the last call in each ``delay`` window.

    Each call restarts the timer. Once ``fn`` has started for a call it runs
    to completion even if newer calls arrive.
    """
    if delay < 0:
        raise ValueError("delay must be non-negative")
    clock = clock or SYSTEM_CLOCK

    timer: asyncio.Task[None] | None = None
    waiter: asyncio.Future[T | None] | None = None

    async def fire(
        own_waiter: asyncio.Future[T | None], args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> None:
        nonlocal timer, waiter
        await clock.sleep(delay)
        # Committed: newer calls start a fresh window instead of cancelling us
        timer = None
        waiter = None
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            if not own_waiter.done():
                own_waiter.set_exception(exc)
        else:
            if not own_waiter.done():
                own_waiter.set_result(result)

    @wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T | None:
        nonlocal timer, waiter
        if timer is not None and not timer.done():
            timer.cancel()
        if waiter is not None and not waiter.done():
            logger.debug("Debounced call to %s superseded", getattr(fn, "__name__", fn))
            waiter.set_result(None)

        own_waiter: asyncio.Future[T | None] = asyncio.get_running_loop().create_future()
        own_timer = asyncio.ensure_future(fire(own_waiter, args, kwargs))
        waiter = own_waiter
        timer = own_timer
        try:
            return await own_waiter
        except asyncio.CancelledError:
            # Caller gave up before the window closed; nobody wants the result
            if timer is own_timer:
                own_timer.cancel()
                timer = None
                waiter = None
            raise

    return wrapper


def throttle_async(
    fn: Callable[..., Awaitable[T]],
    interval: float,
    *,
    clock: Clock | None = None,
) -> Callable[..., Awaitable[T | None]]:
    """Invoke ``fn`` at most once per ``interval``; drop calls in between."""
    if interval < 0:
        raise ValueError("interval must be non-negative")
    clock = clock or SYSTEM_CLOCK

    last_invocation: float | None = None

    @wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T | None:
        nonlocal last_invocation
        now = clock.monotonic()
        if last_invocation is not None and now - last_invocation < interval:
            logger.debug("Throttled call to %s dropped", getattr(fn, "__name__", fn))
            return None
        last_invocation = now
        return await fn(*args, **kwargs)

    return wrapper
