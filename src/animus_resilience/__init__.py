"""Animus Resilience - composable retry, timeout, circuit breaking and concurrency control."""

__version__ = "0.1.0"

from .batch import batch_process
from .boundary import async_handler, safe_async, with_error_boundary
from .cancellation import CancellationToken
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from .clock import SYSTEM_CLOCK, Clock, ManualClock, SystemClock
from .config import ResilienceSettings, configure_logging, load_settings
from .errors import (
    CircuitOpenError,
    ErrorSeverity,
    ExternalServiceError,
    OperationCancelledError,
    OperationTimeoutError,
    ResilienceError,
    RetryFailedError,
    UnknownError,
    is_transient_error,
    retry_on_transient,
    wrap_error,
)
from .events import EventSink, LoggingEventSink, emit_event
from .pool import PoolStats, TaskPool
from .reporting import ErrorReporter, ErrorReporterConfig, ErrorSummary
from .retry import RetryConfig, async_with_retry, retry_with_backoff
from .shapers import debounce_async, throttle_async
from .timeout import timeout_after, with_timeout

__all__ = [
    # Errors
    "ResilienceError",
    "UnknownError",
    "RetryFailedError",
    "OperationTimeoutError",
    "CircuitOpenError",
    "OperationCancelledError",
    "ExternalServiceError",
    "ErrorSeverity",
    "wrap_error",
    "is_transient_error",
    "retry_on_transient",
    # Timing and cancellation
    "Clock",
    "SystemClock",
    "ManualClock",
    "SYSTEM_CLOCK",
    "CancellationToken",
    # Primitives
    "with_timeout",
    "timeout_after",
    "RetryConfig",
    "retry_with_backoff",
    "async_with_retry",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "TaskPool",
    "PoolStats",
    "batch_process",
    "debounce_async",
    "throttle_async",
    # Error boundaries and reporting
    "async_handler",
    "with_error_boundary",
    "safe_async",
    "ErrorReporter",
    "ErrorReporterConfig",
    "ErrorSummary",
    # Events
    "EventSink",
    "LoggingEventSink",
    "emit_event",
    # Config
    "ResilienceSettings",
    "load_settings",
    "configure_logging",
]
