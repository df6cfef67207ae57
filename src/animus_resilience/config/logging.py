"""Logging configuration with JSON format support."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import IO, Any

_SENSITIVE_PATTERNS = [
    (re.compile(r"sk-[a-zA-Z0-9_-]{20,}"), "[REDACTED_API_KEY]"),
    (re.compile(r"ghp_[a-zA-Z0-9]{36}"), "[REDACTED_GITHUB_TOKEN]"),
    (
        re.compile(r'(password|token|secret)["\']?\s*[:=]\s*["\']?[^"\'\s,}]+', re.IGNORECASE),
        r"\1=[REDACTED]",
    ),
]

# Marks handlers installed by configure_logging so reconfiguring replaces only ours
_HANDLER_MARKER = "_animus_resilience_handler"


def sanitize_log_message(message: str) -> str:
    """Redact API keys, tokens and passwords from a log message."""
    for pattern, replacement in _SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class SanitizingFilter(logging.Filter):
    """Filter that sanitizes sensitive data from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = sanitize_log_message(str(record.msg))
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                sanitize_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Resilience context passed through ``extra`` (correlation ids, circuit
    names, retry attempts, event payloads) is lifted to top-level keys.
    """

    CONTEXT_FIELDS = (
        "correlation_id",
        "error_code",
        "event",
        "event_payload",
        "circuit",
        "attempt",
        "delay",
        "timeout",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            {name: getattr(record, name) for name in self.CONTEXT_FIELDS if hasattr(record, name)}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable single-line formatter."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(
    level: str = "INFO",
    format: str = "text",
    sanitize_logs: bool = True,
    *,
    logger_name: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """Attach a console handler for resilience logs.

    Calling again replaces the handler installed by the previous call and
    leaves handlers added by anything else alone.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format ('text' or 'json')
        sanitize_logs: If True, redact sensitive data (API keys, tokens) from logs
        logger_name: Logger to configure (root logger when None)
        stream: Output stream (stdout when None)

    Returns:
        The installed handler
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    target = logging.getLogger(logger_name)
    target.setLevel(numeric_level)

    for handler in target.handlers[:]:
        if getattr(handler, _HANDLER_MARKER, False):
            target.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if format.lower() == "json" else TextFormatter())
    if sanitize_logs:
        handler.addFilter(SanitizingFilter())
    setattr(handler, _HANDLER_MARKER, True)

    target.addHandler(handler)
    return handler
