"""Error-boundary helpers.

Small wrappers that decide what a caller sees when an operation fails:
a typed error, a fallback value, or a default.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from animus_resilience.errors import ResilienceError, UnknownError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Distinguishes "no fallback given" from an explicit ``None`` fallback
_MISSING: Any = object()


def async_handler(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Decorator that classifies every failure of ``fn``.

    Typed resilience errors pass through unchanged; anything else is
    wrapped in ``UnknownError`` with the original as its cause.
    """

    @wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except ResilienceError:
            raise
        except Exception as exc:
            raise UnknownError(
                "Async operation failed",
                {"operation": getattr(fn, "__name__", None), "args": len(args)},
                exc,
            ) from exc

    return wrapper


async def with_error_boundary(
    operation: Callable[[], Awaitable[T]],
    fallback: T = _MISSING,
    on_error: Callable[[Exception], None] | None = None,
) -> T:
    """Run an operation, falling back to a value on failure.

    Args:
        operation: Zero-argument async callable
        fallback: Returned on failure when given (``None`` counts as given)
        on_error: Called with the error before falling back or re-raising

    Returns:
        The operation's result, or ``fallback`` if it failed
    """
    try:
        return await operation()
    except Exception as exc:
        if on_error:
            on_error(exc)

        if fallback is not _MISSING:
            logger.debug("Error boundary returned fallback after: %s", exc)
            return fallback

        raise


async def safe_async(operation: Callable[[], Awaitable[T]], default: T) -> T:
    """Return the operation's result, or ``default`` if it raises."""
    try:
        return await operation()
    except Exception as exc:
        logger.debug("safe_async returned default after: %s", exc)
        return default
