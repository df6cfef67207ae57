"""Deadline guard for async operations.

Races an operation against a timer. Cancellation on timeout is cooperative:
the optional token is cancelled and the operation is left to notice it.

Example:
    token = CancellationToken()
    result = await with_timeout(lambda: fetch(token), 10.0, cancel_token=token)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from animus_resilience.cancellation import CancellationToken
from animus_resilience.clock import SYSTEM_CLOCK, Clock
from animus_resilience.errors import OperationTimeoutError
from animus_resilience.events import EventSink, emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Operations that lost the race keep running until they notice cancellation
_detached: set[asyncio.Task[Any]] = set()


def _forget(task: asyncio.Task[Any]) -> None:
    _detached.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Timed-out operation finished late with %s: %s", type(exc).__name__, exc)


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout: float,
    *,
    cancel_token: CancellationToken | None = None,
    clock: Clock | None = None,
    sink: EventSink | None = None,
    name: str | None = None,
) -> T:
    """Run an operation with a deadline.

    Args:
        operation: Zero-argument async callable to run
        timeout: Deadline in seconds
        cancel_token: Cancelled when the deadline fires
        clock: Time source (defaults to the system clock)
        sink: Optional event sink
        name: Operation name used in errors and logs

    Returns:
        The operation's result

    Raises:
        OperationTimeoutError: If the deadline fires first
        Exception: The operation's own error if it fails first
    """
    if timeout <= 0:
        raise ValueError("timeout must be positive")

    clock = clock or SYSTEM_CLOCK
    op_name = name or getattr(operation, "__name__", None)

    op_task = asyncio.ensure_future(operation())
    timer = asyncio.ensure_future(clock.sleep(timeout))

    try:
        await asyncio.wait({op_task, timer}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        op_task.cancel()
        timer.cancel()
        raise

    if op_task.done():
        timer.cancel()
        return op_task.result()

    logger.warning("Operation %s timed out after %.3fs", op_name or "<anonymous>", timeout)
    if cancel_token is not None:
        cancel_token.cancel(f"Operation timed out after {timeout}s")

    _detached.add(op_task)
    op_task.add_done_callback(_forget)

    emit_event(sink, "timeout.expired", {"operation": op_name, "timeout": timeout})
    raise OperationTimeoutError(timeout, operation=op_name)


def timeout_after(
    seconds: float,
    clock: Clock | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of ``with_timeout``.

    Example:
        @timeout_after(5.0)
        async def load_profile(user_id):
            return await db.fetch(user_id)
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await with_timeout(
                lambda: func(*args, **kwargs),
                seconds,
                clock=clock,
                name=func.__name__,
            )

        return wrapper

    return decorator
