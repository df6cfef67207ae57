"""Settings for resilience defaults."""

import logging
from pathlib import Path
from typing import ClassVar

from pydantic import Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from animus_resilience.batch import batch_process
from animus_resilience.circuit_breaker import CircuitBreakerConfig
from animus_resilience.pool import TaskPool
from animus_resilience.retry import RetryConfig
from animus_resilience.timeout import with_timeout

logger = logging.getLogger(__name__)

# YAML config search paths (checked in order, first found wins)
_YAML_SEARCH_PATHS = [
    Path("resilience.yaml"),
    Path("config/resilience.yaml"),
    Path.home() / ".config" / "animus" / "resilience.yaml",
]

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _find_yaml_config() -> Path | None:
    """Find the first resilience.yaml in search paths."""
    for path in _YAML_SEARCH_PATHS:
        if path.is_file():
            return path
    return None


class ResilienceSettings(BaseSettings):
    """Default tuning for the resilience primitives.

    Priority chain: init kwargs > env vars > .env file > resilience.yaml > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="ANIMUS_RESILIENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Class-level record of the resolved YAML path (not a pydantic field)
    _yaml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Priority: init kwargs > env vars > .env file > resilience.yaml > file secrets > defaults
        """
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
        ]

        yaml_path = _find_yaml_config()
        cls._yaml_path = yaml_path
        if yaml_path:
            sources.append(
                YamlConfigSettingsSource(
                    settings_cls,
                    yaml_file=yaml_path,
                    yaml_file_encoding="utf-8",
                )
            )

        sources.append(file_secret_settings)
        return tuple(sources)

    # Retry
    retry_max_retries: int = Field(3, ge=0, description="Retries after the first attempt")
    retry_base_delay: float = Field(1.0, gt=0, description="Initial backoff delay in seconds")
    retry_max_delay: float = Field(30.0, gt=0, description="Backoff delay cap in seconds")
    retry_exponential_base: float = Field(2.0, ge=1, description="Backoff growth factor")
    retry_jitter: bool = Field(True, description="Add random jitter to backoff delays")

    # Circuit breaker
    circuit_failure_threshold: int = Field(5, ge=1, description="Failures before opening")
    circuit_recovery_timeout: float = Field(
        30.0, gt=0, description="Seconds open before a probe is allowed"
    )
    circuit_monitor_interval: float = Field(
        5.0, ge=0, description="Minimum seconds between recovery checks when polled"
    )

    # Timeout, pool and batch
    default_timeout: float = Field(30.0, gt=0, description="Default operation timeout in seconds")
    pool_concurrency: int = Field(10, ge=1, description="Default task pool size")
    batch_size: int | None = Field(None, ge=1, description="Default batch size (None = all)")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")
    sanitize_logs: bool = Field(True, description="Redact secrets from log output")

    @model_validator(mode="after")
    def _validate_logging(self) -> "ResilienceSettings":
        self.log_level = self.log_level.upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        self.log_format = self.log_format.lower()
        if self.log_format not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return self

    @property
    def yaml_path(self) -> Path | None:
        """YAML file that contributed to these settings, if any."""
        return type(self)._yaml_path

    def retry_config(self, **overrides) -> RetryConfig:
        """Build a RetryConfig from these defaults."""
        values = {
            "max_retries": self.retry_max_retries,
            "base_delay": self.retry_base_delay,
            "max_delay": self.retry_max_delay,
            "exponential_base": self.retry_exponential_base,
            "jitter": self.retry_jitter,
        }
        values.update(overrides)
        return RetryConfig(**values)

    def circuit_breaker_config(self, **overrides) -> CircuitBreakerConfig:
        """Build a CircuitBreakerConfig from these defaults."""
        values = {
            "failure_threshold": self.circuit_failure_threshold,
            "recovery_timeout": self.circuit_recovery_timeout,
            "monitor_interval": self.circuit_monitor_interval,
        }
        values.update(overrides)
        return CircuitBreakerConfig(**values)

    def task_pool(self, **overrides) -> TaskPool:
        """Build a TaskPool sized by ``pool_concurrency``."""
        values = {"concurrency": self.pool_concurrency}
        values.update(overrides)
        return TaskPool(**values)

    async def run_with_timeout(self, operation, timeout: float | None = None, **kwargs):
        """Run ``with_timeout`` using ``default_timeout`` unless one is given."""
        if timeout is None:
            timeout = self.default_timeout
        return await with_timeout(operation, timeout, **kwargs)

    async def run_batch(self, items, operation, **overrides):
        """Run ``batch_process`` with ``batch_size`` and ``pool_concurrency`` defaults."""
        values = {"batch_size": self.batch_size, "concurrency": self.pool_concurrency}
        values.update(overrides)
        return await batch_process(items, operation, **values)

    def configure_logging(self, logger_name: str | None = None) -> logging.Handler:
        """Apply the logging settings (root logger by default)."""
        from animus_resilience.config.logging import configure_logging

        return configure_logging(
            level=self.log_level,
            format=self.log_format,
            sanitize_logs=self.sanitize_logs,
            logger_name=logger_name,
        )


def load_settings(**overrides) -> ResilienceSettings:
    """Build a fresh settings instance; nothing is cached."""
    settings = ResilienceSettings(**overrides)
    if settings.yaml_path:
        logger.debug("Loaded resilience settings from %s", settings.yaml_path)
    return settings
