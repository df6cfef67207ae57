"""Error reporting: classify, log, count and notify.

An ``ErrorReporter`` is an ordinary instance owned by the caller; nothing
here is process-wide.

Example:
    reporter = ErrorReporter(ErrorReporterConfig(notification_threshold="critical"))

    @reporter.wrap
    async def sync_accounts():
        ...
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

from animus_resilience.errors import SEVERITY_LEVELS, ResilienceError, wrap_error
from animus_resilience.events import EventSink, emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorNotifier = Callable[[ResilienceError, dict[str, Any] | None], Awaitable[None]]

_LOG_LEVELS = {
    "critical": logging.ERROR,
    "high": logging.ERROR,
    "medium": logging.WARNING,
    "low": logging.INFO,
}


@dataclass
class ErrorReporterConfig:
    """Configuration for error reporting."""

    notification_threshold: str = "high"  # low, medium, high, critical
    include_stack_trace: bool = False

    def __post_init__(self) -> None:
        if self.notification_threshold not in SEVERITY_LEVELS:
            raise ValueError(
                f"notification_threshold must be one of {', '.join(SEVERITY_LEVELS)}"
            )


@dataclass
class ErrorSummary:
    """Counts of reported errors."""

    total_errors: int
    by_category: dict[str, int]
    by_severity: dict[str, int]
    top_errors: list[tuple[str, int]]


class ErrorReporter:
    """Turns raw exceptions into logged, counted, typed errors."""

    def __init__(
        self,
        config: ErrorReporterConfig | None = None,
        *,
        sink: EventSink | None = None,
        notifier: ErrorNotifier | None = None,
    ):
        self.config = config or ErrorReporterConfig()
        self._sink = sink
        self._notifier = notifier

        self._total = 0
        self._by_category: Counter[str] = Counter()
        self._by_severity: Counter[str] = Counter()
        self._by_code: Counter[str] = Counter()

    def set_notifier(self, notifier: ErrorNotifier | None) -> None:
        self._notifier = notifier

    def process_error(
        self, error: BaseException, context: dict[str, Any] | None = None
    ) -> ResilienceError:
        """Classify an error and attach request context to its metadata."""
        processed = wrap_error(error)
        if context:
            processed.metadata["context"] = {**processed.metadata.get("context", {}), **context}
        return processed

    async def handle_error(
        self, error: BaseException, context: dict[str, Any] | None = None
    ) -> ResilienceError:
        """Log, count and (above the threshold) notify about an error.

        Returns:
            The typed error that was reported
        """
        processed = self.process_error(error, context)

        self._log(processed)
        self._count(processed)
        emit_event(
            self._sink,
            "error.recorded",
            {
                "error_code": processed.code,
                "category": processed.category,
                "severity": processed.severity.level,
                "correlation_id": processed.correlation_id,
            },
        )

        if self._should_notify(processed):
            await self._notify(processed, context)

        return processed

    def wrap(self, fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Decorator that reports failures of ``fn`` and re-raises them."""

        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                await self.handle_error(exc, {"operation": fn.__name__})
                raise

        return wrapper

    def summary(self, top: int = 5) -> ErrorSummary:
        """Summarize everything reported so far."""
        return ErrorSummary(
            total_errors=self._total,
            by_category=dict(self._by_category),
            by_severity=dict(self._by_severity),
            top_errors=self._by_code.most_common(top),
        )

    def _log(self, error: ResilienceError) -> None:
        level = _LOG_LEVELS.get(error.severity.level, logging.ERROR)
        logger.log(
            level,
            "%s [%s]: %s",
            error.code,
            error.category,
            error.message,
            exc_info=error if self.config.include_stack_trace else None,
            extra={
                "correlation_id": error.correlation_id,
                "error_code": error.code,
            },
        )

    def _count(self, error: ResilienceError) -> None:
        self._total += 1
        self._by_category[error.category] += 1
        self._by_severity[error.severity.level] += 1
        self._by_code[error.code] += 1

    def _should_notify(self, error: ResilienceError) -> bool:
        if self._notifier is None:
            return False
        threshold = SEVERITY_LEVELS.index(self.config.notification_threshold)
        level = error.severity.level
        return level in SEVERITY_LEVELS and SEVERITY_LEVELS.index(level) >= threshold

    async def _notify(self, error: ResilienceError, context: dict[str, Any] | None) -> None:
        try:
            await self._notifier(error, context)
        except Exception:
            logger.exception(
                "Failed to send error notification for %s",
                error.correlation_id,
            )
        else:
            logger.info(
                "Error notification sent for %s (%s)",
                error.correlation_id,
                error.severity.level,
            )
