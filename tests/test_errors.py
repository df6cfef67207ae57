"""Tests for the resilience error hierarchy."""

import pytest

from animus_resilience.errors import (
    CircuitOpenError,
    ErrorSeverity,
    ExternalServiceError,
    OperationTimeoutError,
    ResilienceError,
    RetryFailedError,
    UnknownError,
    is_transient_error,
    redact_metadata,
    retry_on_transient,
    wrap_error,
)


class TestResilienceError:
    """Tests for the base error contract."""

    def test_carries_classification_fields(self):
        """Base error exposes code, status, severity and category."""
        error = ResilienceError("boom", {"component": "db"})
        assert error.error_code == "RESILIENCE_ERROR"
        assert error.status_code == 500
        assert error.category == "internal"
        assert isinstance(error.severity, ErrorSeverity)
        assert error.metadata == {"component": "db"}
        assert error.timestamp.tzinfo is not None
        assert str(error) == "boom"

    def test_generates_correlation_id(self):
        """A correlation id is generated when none is supplied."""
        first = ResilienceError("a")
        second = ResilienceError("b")
        assert first.correlation_id.startswith("err_")
        assert first.correlation_id != second.correlation_id

    def test_reuses_supplied_correlation_id(self):
        """Metadata correlation id is kept."""
        error = ResilienceError("a", {"correlation_id": "req-123"})
        assert error.correlation_id == "req-123"

    def test_cause_is_chained(self):
        """Cause is stored and chained as __cause__."""
        original = ValueError("bad")
        error = ResilienceError("wrapped", cause=original)
        assert error.cause is original
        assert error.__cause__ is original

    def test_to_dict_redacts_sensitive_metadata(self):
        """Sensitive metadata keys are masked in the dict form."""
        error = ResilienceError("a", {"api_key": "sk-123", "user": "bob", "password": "x"})
        data = error.to_dict()
        assert data["metadata"]["api_key"] == "[REDACTED]"
        assert data["metadata"]["password"] == "[REDACTED]"
        assert data["metadata"]["user"] == "bob"
        assert data["error_code"] == "RESILIENCE_ERROR"
        assert data["severity"]["level"] == "high"

    def test_sanitized_response_hides_metadata(self):
        """Client envelope omits metadata and the stack by default."""
        error = ResilienceError("a", {"secret": "s"})
        response = error.get_sanitized_response()
        assert set(response["error"]) == {
            "code",
            "message",
            "timestamp",
            "correlation_id",
            "category",
        }

    def test_sanitized_response_includes_stack_when_raised(self):
        """Stack is included on request once the error has a traceback."""
        try:
            raise ResilienceError("a")
        except ResilienceError as exc:
            response = exc.get_sanitized_response(include_stack=True)
        assert "ResilienceError" in response["error"]["stack"]


class TestDerivedErrors:
    """Tests for the concrete error kinds."""

    def test_unknown_error(self):
        error = UnknownError("oops", {"x": 1}, cause=KeyError("k"))
        assert error.error_code == "UNKNOWN_ERROR"
        assert error.status_code == 500
        assert error.metadata["operation"] == "unknown_operation"
        assert isinstance(error.cause, KeyError)

    def test_retry_failed_error(self):
        last = ConnectionError("down")
        error = RetryFailedError("failed", last, {"attempts": 4})
        assert error.error_code == "RETRY_FAILED"
        assert error.status_code == 503
        assert error.cause is last
        assert error.attempts == 4
        assert error.severity.recovery == "automatic"

    def test_timeout_error_is_builtin_timeout(self):
        """Timeout errors can be caught as TimeoutError."""
        error = OperationTimeoutError(1.5, operation="fetch")
        assert isinstance(error, TimeoutError)
        assert "1.5s" in str(error)
        assert error.metadata["timeout_ms"] == 1500

    def test_circuit_open_error(self):
        error = CircuitOpenError(circuit="payments", retry_after=2.0)
        assert error.error_code == "CIRCUIT_OPEN"
        assert error.retry_after == 2.0
        assert error.metadata["circuit"] == "payments"

    def test_external_service_factories(self):
        timeout = ExternalServiceError.for_timeout("search", "query", 3.0)
        assert "search failed during query" in timeout.message
        assert timeout.metadata["reason"] == "timeout"
        assert isinstance(timeout.cause, TimeoutError)

        limited = ExternalServiceError.for_rate_limit("search", retry_after=10)
        assert limited.metadata["status_code"] == 429

        invalid = ExternalServiceError.for_invalid_response("search", "query", 500)
        assert "(500)" in str(invalid.cause)


class TestWrapError:
    """Tests for idempotent error wrapping."""

    def test_wraps_plain_exception(self):
        original = RuntimeError("raw")
        wrapped = wrap_error(original)
        assert isinstance(wrapped, UnknownError)
        assert wrapped.cause is original
        assert wrapped.metadata["original_error"] == "RuntimeError"
        assert wrapped.message == "raw"

    def test_typed_error_returned_unchanged(self):
        """Already-typed errors are never double-wrapped."""
        typed = RetryFailedError("x")
        assert wrap_error(typed) is typed
        assert wrap_error(wrap_error(typed)) is typed

    def test_empty_message_gets_default(self):
        wrapped = wrap_error(RuntimeError())
        assert wrapped.message == "An unexpected error occurred"


class TestTransientClassification:
    """Tests for default transient heuristics."""

    @pytest.mark.parametrize(
        "error",
        [
            ConnectionError("reset"),
            TimeoutError(),
            OperationTimeoutError(1.0),
            ExternalServiceError.for_connection_failure("db", "connect"),
        ],
    )
    def test_transient(self, error):
        assert is_transient_error(error)
        assert retry_on_transient(error, 0)

    @pytest.mark.parametrize(
        "error",
        [ValueError("bad"), UnknownError("x"), CircuitOpenError()],
    )
    def test_terminal(self, error):
        assert not is_transient_error(error)

    def test_status_code_attribute(self):
        """Objects exposing a retryable status code are transient."""

        class HTTPError(Exception):
            def __init__(self, status_code):
                self.status_code = status_code

        assert is_transient_error(HTTPError(503))
        assert not is_transient_error(HTTPError(404))


def test_redact_metadata_returns_copy():
    original = {"token": "abc"}
    redacted = redact_metadata(original)
    assert redacted["token"] == "[REDACTED]"
    assert original["token"] == "abc"
