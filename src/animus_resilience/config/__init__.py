"""Configuration module for animus-resilience."""

from .logging import JSONFormatter, SanitizingFilter, TextFormatter, configure_logging
from .settings import ResilienceSettings, load_settings

__all__ = [
    "ResilienceSettings",
    "load_settings",
    "configure_logging",
    "JSONFormatter",
    "SanitizingFilter",
    "TextFormatter",
]
