"""Retry with exponential backoff for transient failures.

Example:
    config = RetryConfig(max_retries=3, base_delay=0.5, should_retry=retry_on_transient)
    result = await retry_with_backoff(lambda: client.fetch(url), config)

    @async_with_retry(max_retries=5, base_delay=0.2, should_retry=retry_on_transient)
    async def load_manifest(bucket):
        return await storage.get(bucket, "manifest.json")
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

from animus_resilience.clock import SYSTEM_CLOCK, Clock
from animus_resilience.errors import RetryFailedError
from animus_resilience.events import EventSink, emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Backoff schedule and retry policy.

    ``max_retries`` counts retries after the first attempt, so an operation
    runs at most ``max_retries + 1`` times. Delays are in seconds.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    should_retry: Callable[[Exception, int], bool] | None = None
    on_retry: Callable[[Exception, int], None] | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay <= 0:
            raise ValueError("max_delay must be positive")

    def calculate_delay(self, attempt: int) -> float:
        """Seconds to wait after the failed attempt with 0-based index ``attempt``."""
        delay = min(self.base_delay * self.exponential_base**attempt, self.max_delay)
        if self.jitter:
            # Jitter only ever lengthens the wait, by up to 100%
            delay += random.random() * delay
        return delay


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    clock: Clock | None = None,
    sink: EventSink | None = None,
    name: str | None = None,
) -> T:
    """Invoke an operation until it succeeds or retries run out.

    Args:
        operation: Zero-argument async callable
        config: Retry settings (defaults to ``RetryConfig()``)
        clock: Time source for backoff sleeps
        sink: Optional event sink
        name: Operation name for logs and error metadata

    Returns:
        Result of the first successful attempt

    Raises:
        RetryFailedError: After ``max_retries + 1`` failed attempts
        Exception: The original error when ``should_retry`` declines it
    """
    config = config or RetryConfig()
    clock = clock or SYSTEM_CLOCK
    op_name = name or getattr(operation, "__name__", "operation")

    for attempt in range(config.max_retries + 1):
        try:
            return await operation()
        except Exception as exc:
            if config.should_retry is not None and not config.should_retry(exc, attempt):
                # Terminal error, surface it untouched
                logger.debug("Not retrying %s after attempt %d: %s", op_name, attempt + 1, exc)
                raise

            if attempt >= config.max_retries:
                logger.warning(
                    "Max retries (%d) exhausted for %s: %s",
                    config.max_retries,
                    op_name,
                    exc,
                )
                emit_event(
                    sink,
                    "retry.exhausted",
                    {"operation": op_name, "attempts": attempt + 1, "error": repr(exc)},
                )
                raise RetryFailedError(
                    f"Operation failed after {attempt + 1} attempts",
                    cause=exc,
                    metadata={"attempts": attempt + 1, "operation_name": op_name},
                ) from exc

            delay = config.calculate_delay(attempt)
            logger.info(
                "Retry %d/%d for %s after %.2fs: %s",
                attempt + 1,
                config.max_retries,
                op_name,
                delay,
                exc,
                extra={"attempt": attempt, "delay": delay},
            )

            if config.on_retry:
                config.on_retry(exc, attempt)
            emit_event(
                sink,
                "retry.scheduled",
                {"operation": op_name, "attempt": attempt, "delay": delay, "error": repr(exc)},
            )

            await clock.sleep(delay)

    raise AssertionError("unreachable")


def async_with_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    should_retry: Callable[[Exception, int], bool] | None = None,
    on_retry: Callable[[Exception, int], None] | None = None,
    clock: Clock | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of ``retry_with_backoff``.

    Arguments mirror ``RetryConfig``; ``clock`` is the time source for
    backoff sleeps. The decorated function's name is used in logs and in
    ``RetryFailedError`` metadata.
    """
    config = RetryConfig(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        should_retry=should_retry,
        on_retry=on_retry,
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_with_backoff(
                lambda: func(*args, **kwargs),
                config,
                clock=clock,
                name=func.__name__,
            )

        return wrapper

    return decorator
