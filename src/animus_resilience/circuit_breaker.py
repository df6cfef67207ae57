"""Circuit breaker pattern for resilient async calls.

Prevents cascading failures by failing fast when a dependency is unhealthy.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Dependency unhealthy, calls fail immediately without being invoked
- HALF_OPEN: Recovery window elapsed, exactly one probe call allowed

Example:
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0))

    result = await breaker.execute(lambda: client.get("/status"))

    # Or as a decorator:
    @breaker
    async def call_external_api():
        return await client.get("/status")
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, TypeVar

from animus_resilience.clock import SYSTEM_CLOCK, Clock
from animus_resilience.errors import CircuitOpenError
from animus_resilience.events import EventSink, emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half-open"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior.

    Args:
        failure_threshold: Consecutive failures before opening circuit
        recovery_timeout: Seconds to wait after the opening failure before probing
        monitor_interval: Minimum seconds between recovery checks when polled
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    monitor_interval: float = 5.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.recovery_timeout <= 0:
            raise ValueError("recovery_timeout must be positive")
        if self.monitor_interval < 0:
            raise ValueError("monitor_interval must be non-negative")


class CircuitBreaker:
    """Circuit breaker for a single dependency.

    State is owned by the instance and mutated only between awaits, so no
    locking is needed on a single event loop.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        name: str = "default",
        clock: Clock | None = None,
        sink: EventSink | None = None,
        excluded_exceptions: tuple[type[Exception], ...] = (),
    ):
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self.excluded_exceptions = excluded_exceptions
        self._clock = clock or SYSTEM_CLOCK
        self._sink = sink

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: float | None = None
        self._last_assessed_at: float | None = None
        self._probe_in_flight = False
        # Incremented on every transition; calls started in an older
        # generation do not move the state machine when they finish.
        self._generation = 0

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self.get_state()

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_at(self) -> float | None:
        return self._last_failure_at

    @property
    def is_closed(self) -> bool:
        """True if circuit is closed (normal operation)."""
        return self.get_state() == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        """True if circuit is open (failing fast)."""
        return self.get_state() == CircuitState.OPEN

    def get_state(self) -> CircuitState:
        """Poll the circuit state.

        Recovery eligibility is reassessed at most once per
        ``monitor_interval``; polling never invokes the operation.
        """
        now = self._clock.monotonic()
        if (
            self._last_assessed_at is None
            or now - self._last_assessed_at >= self.config.monitor_interval
        ):
            self._assess_recovery(now)
        return self._state

    def _assess_recovery(self, now: float) -> None:
        """Move OPEN to HALF_OPEN once the recovery timeout has elapsed."""
        self._last_assessed_at = now
        if self._state != CircuitState.OPEN:
            return
        elapsed = now - (self._last_failure_at or 0.0)
        if elapsed >= self.config.recovery_timeout:
            logger.info(
                "Circuit '%s' entering half-open state after %.1fs recovery timeout",
                self.name,
                elapsed,
            )
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._generation += 1
        self._probe_in_flight = False
        emit_event(
            self._sink,
            "circuit.state_changed",
            {
                "circuit": self.name,
                "from": old_state.value,
                "to": new_state.value,
                "failure_count": self._failure_count,
            },
        )

    def _retry_after(self, now: float) -> float:
        if self._last_failure_at is None:
            return 0.0
        return max(0.0, self.config.recovery_timeout - (now - self._last_failure_at))

    def _before_call(self) -> tuple[int, bool]:
        """Admit or reject a call; returns (generation, is_probe)."""
        now = self._clock.monotonic()
        self._assess_recovery(now)

        if self._state == CircuitState.OPEN:
            retry_after = self._retry_after(now)
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open - service unavailable. "
                f"Retry after {retry_after:.1f}s",
                circuit=self.name,
                retry_after=retry_after,
            )

        if self._state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise CircuitOpenError(
                    f"Circuit '{self.name}' is half-open and a probe is already in flight",
                    circuit=self.name,
                    retry_after=0.0,
                )
            self._probe_in_flight = True
            return self._generation, True

        return self._generation, False

    def _record_success(self, generation: int, is_probe: bool) -> None:
        """Record a successful call."""
        if is_probe:
            if generation != self._generation:
                return
            logger.info("Circuit '%s' closed after successful probe", self.name)
            self._failure_count = 0
            self._last_failure_at = None
            self._transition(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            # Reset failure count on success
            self._failure_count = 0

    def _record_failure(self, exc: Exception, generation: int, is_probe: bool) -> None:
        """Record a failed call."""
        if generation != self._generation:
            return

        if isinstance(exc, self.excluded_exceptions):
            logger.debug(
                "Circuit '%s' ignoring excluded exception: %s", self.name, type(exc).__name__
            )
            if is_probe:
                self._probe_in_flight = False
            return

        now = self._clock.monotonic()
        if is_probe:
            # A failed probe counts as a fresh threshold-triggering failure
            logger.warning("Circuit '%s' reopened after failed probe", self.name)
            self._failure_count = self.config.failure_threshold
            self._last_failure_at = now
            self._transition(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED:
            self._failure_count += 1
            self._last_failure_at = now
            if self._failure_count >= self.config.failure_threshold:
                logger.warning(
                    "Circuit '%s' opened after %d consecutive failures",
                    self.name,
                    self._failure_count,
                )
                self._transition(CircuitState.OPEN)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Execute an operation with circuit breaker protection.

        Args:
            operation: Zero-argument async callable

        Returns:
            Result from the operation

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: Any exception from the operation (also recorded as failure)
        """
        generation, is_probe = self._before_call()

        try:
            result = await operation()
        except Exception as e:
            self._record_failure(e, generation, is_probe)
            raise
        except BaseException:
            # Cancelled mid-probe: let the next caller probe instead
            if is_probe and generation == self._generation:
                self._probe_in_flight = False
            raise

        self._record_success(generation, is_probe)
        return result

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Use circuit breaker as a decorator on an async function."""

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await self.execute(lambda: func(*args, **kwargs))

        return wrapper

    def reset(self) -> None:
        """Manually reset circuit to closed state."""
        logger.info("Circuit '%s' manually reset to closed", self.name)
        self._failure_count = 0
        self._last_failure_at = None
        if self._state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def get_stats(self) -> dict[str, Any]:
        """Get current circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "last_failure_at": self._last_failure_at,
            "failure_threshold": self.config.failure_threshold,
            "recovery_timeout": self.config.recovery_timeout,
            "monitor_interval": self.config.monitor_interval,
        }


class CircuitBreakerRegistry:
    """Caller-owned collection of named circuit breakers.

    Breakers are cached by name, so repeated ``get`` calls with the same
    name return the same instance.
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        *,
        clock: Clock | None = None,
        sink: EventSink | None = None,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._sink = sink
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        """Get or create a named circuit breaker (config only used on creation)."""
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                config or self.default_config,
                name=name,
                clock=self._clock,
                sink=self._sink,
            )
        return self._breakers[name]

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def all_stats(self) -> dict[str, dict[str, Any]]:
        """Get statistics for all circuit breakers."""
        return {name: breaker.get_stats() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        """Reset all circuit breakers to closed state."""
        for breaker in self._breakers.values():
            breaker.reset()
