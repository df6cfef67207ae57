"""Resilience error hierarchy.

Every failure surfaced by the toolkit is, or wraps, a ``ResilienceError``
carrying a code, status, severity, category and correlation id.
"""

from __future__ import annotations

import time
import traceback
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

# HTTP status codes that indicate a transient upstream condition
RETRYABLE_STATUS_CODES = frozenset(
    {
        408,  # Request Timeout
        429,  # Too Many Requests (rate limit)
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }
)

_SENSITIVE_KEYS = ("password", "token", "secret", "key", "credential")

SEVERITY_LEVELS = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class ErrorSeverity:
    """How bad an error is, who it hurts, and how it recovers."""

    level: str  # low, medium, high, critical
    impact: str  # user, system, data, security
    recovery: str  # automatic, manual, none

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def generate_correlation_id() -> str:
    """Create an id suitable for correlating an error across log lines."""
    return f"err_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def redact_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of metadata with sensitive keys masked."""
    sanitized = dict(metadata)
    for key in sanitized:
        if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
    return sanitized


class ResilienceError(Exception):
    """Base error for all resilience toolkit exceptions."""

    code = "RESILIENCE_ERROR"
    status_code = 500
    category = "internal"
    severity = ErrorSeverity(level="high", impact="system", recovery="manual")

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        self.message = message
        self.metadata = dict(metadata or {})
        self.cause = cause
        self.timestamp = datetime.now(UTC)
        self.correlation_id = self.metadata.get("correlation_id") or generate_correlation_id()
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def error_code(self) -> str:
        return self.code

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "error_code": self.code,
            "status_code": self.status_code,
            "severity": self.severity.to_dict(),
            "category": self.category,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
            "metadata": redact_metadata(self.metadata),
        }

    def get_sanitized_response(self, include_stack: bool = False) -> dict[str, Any]:
        """Build a client-facing error envelope without internal metadata."""
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
            "category": self.category,
        }
        if include_stack and self.__traceback__ is not None:
            error["stack"] = "".join(
                traceback.format_exception(type(self), self, self.__traceback__)
            )
        return {"error": error}


class UnknownError(ResilienceError):
    """Wraps a failure that was not already a typed resilience error."""

    code = "UNKNOWN_ERROR"
    status_code = 500
    category = "internal"
    severity = ErrorSeverity(level="high", impact="system", recovery="manual")

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, {**(metadata or {}), "operation": "unknown_operation"}, cause)


class RetryFailedError(ResilienceError):
    """All retry attempts were exhausted."""

    code = "RETRY_FAILED"
    status_code = 503
    category = "external"
    severity = ErrorSeverity(level="medium", impact="system", recovery="automatic")

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        metadata = dict(metadata or {})
        super().__init__(message, {"operation": "retry_operation", **metadata}, cause)
        self.attempts = metadata.get("attempts", 0)


class OperationTimeoutError(ResilienceError, TimeoutError):
    """Operation did not settle before its deadline."""

    code = "TIMEOUT"
    status_code = 504
    category = "timeout"
    severity = ErrorSeverity(level="medium", impact="system", recovery="automatic")

    def __init__(self, timeout: float, operation: str | None = None, metadata: dict | None = None):
        message = f"Operation timed out after {timeout}s"
        if operation:
            message = f"{message}: {operation}"
        super().__init__(
            message,
            {
                **(metadata or {}),
                "timeout": timeout,
                "timeout_ms": int(timeout * 1000),
                "operation": operation,
            },
        )
        self.timeout = timeout


class CircuitOpenError(ResilienceError):
    """Raised when a circuit breaker rejects a call without invoking it."""

    code = "CIRCUIT_OPEN"
    status_code = 503
    category = "circuit_open"
    severity = ErrorSeverity(level="medium", impact="system", recovery="automatic")

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        circuit: str = "",
        retry_after: float | None = None,
    ):
        super().__init__(message, {"circuit": circuit, "retry_after": retry_after})
        self.circuit = circuit
        self.retry_after = retry_after


class OperationCancelledError(ResilienceError):
    """Raised by a cancellation token that an operation chose to honour."""

    code = "OPERATION_CANCELLED"
    status_code = 499
    category = "cancelled"
    severity = ErrorSeverity(level="low", impact="user", recovery="none")

    def __init__(self, reason: str | None = None, token_id: str | None = None):
        super().__init__(
            f"Operation cancelled: {reason}" if reason else "Operation cancelled",
            {"reason": reason, "token_id": token_id},
        )
        self.reason = reason


class ExternalServiceError(ResilienceError):
    """A dependency outside this process failed."""

    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 502
    category = "external"
    severity = ErrorSeverity(level="high", impact="system", recovery="automatic")

    def __init__(
        self,
        service: str,
        operation: str,
        original_error: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(
            f"External service error: {service} failed during {operation}",
            {
                **(metadata or {}),
                "service": service,
                "operation": operation,
                "original_error": str(original_error) if original_error else None,
            },
            original_error,
        )
        self.service = service

    @classmethod
    def for_timeout(cls, service: str, operation: str, timeout: float) -> ExternalServiceError:
        return cls(
            service,
            operation,
            TimeoutError(f"Operation timed out after {timeout}s"),
            {"timeout": timeout, "reason": "timeout"},
        )

    @classmethod
    def for_rate_limit(cls, service: str, retry_after: float | None = None) -> ExternalServiceError:
        return cls(
            service,
            "api_call",
            RuntimeError("Rate limit exceeded"),
            {"retry_after": retry_after, "reason": "rate_limit", "status_code": 429},
        )

    @classmethod
    def for_connection_failure(cls, service: str, operation: str) -> ExternalServiceError:
        return cls(
            service,
            operation,
            ConnectionError("Connection failed"),
            {"reason": "connection_failure"},
        )

    @classmethod
    def for_invalid_response(
        cls, service: str, operation: str, response_code: int | None = None
    ) -> ExternalServiceError:
        suffix = f" ({response_code})" if response_code else ""
        return cls(
            service,
            operation,
            ValueError(f"Invalid response received{suffix}"),
            {"response_code": response_code, "reason": "invalid_response"},
        )


def wrap_error(
    error: BaseException,
    message: str | None = None,
    **metadata: Any,
) -> ResilienceError:
    """Classify any exception as a ResilienceError.

    Typed errors are returned unchanged; everything else becomes an
    UnknownError with the original kept as its cause.
    """
    if isinstance(error, ResilienceError):
        return error
    return UnknownError(
        message or str(error) or "An unexpected error occurred",
        {"original_error": type(error).__name__, **metadata},
        error,
    )


def is_transient_error(error: BaseException) -> bool:
    """Check if an exception represents a condition worth retrying."""
    if isinstance(error, CircuitOpenError):
        return False

    if isinstance(error, ResilienceError):
        status = error.metadata.get("status_code")
        if status in RETRYABLE_STATUS_CODES:
            return True
        return error.severity.recovery == "automatic"

    if isinstance(error, (ConnectionError, TimeoutError, OSError)):
        return True

    # Check for HTTP status in exception attributes
    status_code = getattr(error, "status_code", None) or getattr(error, "status", None)
    return bool(status_code and status_code in RETRYABLE_STATUS_CODES)


def retry_on_transient(error: BaseException, attempt: int) -> bool:
    """``should_retry`` predicate that only retries transient errors."""
    return is_transient_error(error)
