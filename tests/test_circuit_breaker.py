"""Tests for circuit breaker pattern."""

import asyncio

import pytest

from animus_resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from animus_resilience.errors import CircuitOpenError


async def fail():
    raise ConnectionError("service down")


async def succeed():
    return "ok"


class TestCircuitBreakerConfig:
    """Tests for CircuitBreakerConfig."""

    def test_default_config(self):
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.recovery_timeout == 30.0
        assert config.monitor_interval == 5.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"failure_threshold": 0}, {"recovery_timeout": 0}, {"monitor_interval": -1}],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            CircuitBreakerConfig(**kwargs)


class TestCircuitBreaker:
    """Tests for the state machine."""

    def make_breaker(self, clock, sink=None, **kwargs):
        config = CircuitBreakerConfig(
            failure_threshold=kwargs.pop("failure_threshold", 2),
            recovery_timeout=kwargs.pop("recovery_timeout", 0.1),
            monitor_interval=kwargs.pop("monitor_interval", 0.0),
        )
        return CircuitBreaker(config, name="test", clock=clock, sink=sink, **kwargs)

    def test_initial_state_closed(self, clock):
        breaker = self.make_breaker(clock)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_closed
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_success_passes_through(self, clock):
        breaker = self.make_breaker(clock)
        assert await breaker.execute(succeed) == "ok"
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_opens_at_threshold_and_fails_fast(self, clock, events):
        """Threshold 2: second failure opens, third call is never invoked."""
        breaker = self.make_breaker(clock, sink=events)
        call_count = 0

        async def op():
            nonlocal call_count
            call_count += 1
            raise ConnectionError("down")

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(op)

        assert breaker.state == CircuitState.OPEN
        assert breaker.failure_count == 2

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(op)
        assert call_count == 2
        assert exc_info.value.circuit == "test"
        assert exc_info.value.retry_after == pytest.approx(0.1)

        changes = events.of("circuit.state_changed")
        assert changes[0]["from"] == "closed"
        assert changes[0]["to"] == "open"

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, clock):
        breaker = self.make_breaker(clock, failure_threshold=3)

        with pytest.raises(ConnectionError):
            await breaker.execute(fail)
        await breaker.execute(succeed)
        assert breaker.failure_count == 0

        with pytest.raises(ConnectionError):
            await breaker.execute(fail)
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_half_open_after_recovery_timeout(self, clock):
        breaker = self.make_breaker(clock)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)

        await clock.advance(0.05)
        assert breaker.state == CircuitState.OPEN

        await clock.advance(0.05)
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_probe_success_closes(self, clock, events):
        breaker = self.make_breaker(clock, sink=events)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)

        await clock.advance(0.15)
        assert await breaker.execute(succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert [(c["from"], c["to"]) for c in events.of("circuit.state_changed")] == [
            ("closed", "open"),
            ("open", "half-open"),
            ("half-open", "closed"),
        ]

    @pytest.mark.asyncio
    async def test_probe_failure_reopens(self, clock):
        breaker = self.make_breaker(clock)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)

        await clock.advance(0.15)
        with pytest.raises(ConnectionError):
            await breaker.execute(fail)

        assert breaker.state == CircuitState.OPEN
        assert breaker.failure_count == 2
        # Recovery window restarts from the failed probe
        assert breaker.last_failure_at == pytest.approx(0.15)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(succeed)

    @pytest.mark.asyncio
    async def test_single_probe_in_half_open(self, clock):
        """Only one call may probe; concurrent callers are rejected."""
        breaker = self.make_breaker(clock)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)
        await clock.advance(0.15)

        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probed"

        probe = asyncio.ensure_future(breaker.execute(slow_probe))
        await asyncio.sleep(0)

        with pytest.raises(CircuitOpenError):
            await breaker.execute(succeed)

        release.set()
        assert await probe == "probed"
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_cancelled_probe_frees_slot(self, clock):
        breaker = self.make_breaker(clock)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)
        await clock.advance(0.15)

        probe = asyncio.ensure_future(breaker.execute(lambda: asyncio.sleep(10)))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert await breaker.execute(succeed) == "ok"
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_stale_failure_ignored_after_transition(self, clock):
        """A call started before the circuit opened does not count again."""
        breaker = self.make_breaker(clock)
        release = asyncio.Event()

        async def slow_fail():
            await release.wait()
            raise ConnectionError("late")

        straggler = asyncio.ensure_future(breaker.execute(slow_fail))
        await asyncio.sleep(0)

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)
        assert breaker.is_open
        last_failure = breaker.last_failure_at

        await clock.advance(0.05)
        release.set()
        with pytest.raises(ConnectionError):
            await straggler

        assert breaker.failure_count == 2
        assert breaker.last_failure_at == last_failure

    @pytest.mark.asyncio
    async def test_excluded_exceptions_not_counted(self, clock):
        breaker = self.make_breaker(clock, excluded_exceptions=(ValueError,))

        async def bad_input():
            raise ValueError("caller error")

        for _ in range(5):
            with pytest.raises(ValueError):
                await breaker.execute(bad_input)

        assert breaker.is_closed
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_monitor_interval_throttles_polling(self, clock):
        breaker = self.make_breaker(clock, recovery_timeout=1.0, monitor_interval=5.0)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)

        # Assessed at t=0 during the failing call; next poll waits for the interval
        await clock.advance(2.0)
        assert breaker.state == CircuitState.OPEN

        await clock.advance(3.0)
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_execute_reassesses_regardless_of_interval(self, clock):
        breaker = self.make_breaker(clock, recovery_timeout=1.0, monitor_interval=60.0)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)

        await clock.advance(1.0)
        assert await breaker.execute(succeed) == "ok"
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_decorator(self, clock):
        breaker = self.make_breaker(clock)

        @breaker
        async def protected(x):
            return x + 1

        assert await protected(1) == 2
        assert protected.__name__ == "protected"

    @pytest.mark.asyncio
    async def test_reset(self, clock):
        breaker = self.make_breaker(clock)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(fail)

        breaker.reset()
        assert breaker.is_closed
        assert breaker.failure_count == 0
        assert breaker.last_failure_at is None

    def test_get_stats(self, clock):
        stats = self.make_breaker(clock).get_stats()
        assert stats["name"] == "test"
        assert stats["state"] == "closed"
        assert stats["failure_threshold"] == 2


class TestCircuitBreakerRegistry:
    """Tests for the caller-owned registry."""

    def test_get_creates_and_caches(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        first = registry.get("payments")
        assert registry.get("payments") is first
        assert "payments" in registry
        assert len(registry) == 1

    def test_config_used_on_creation(self, clock):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=7), clock=clock)
        assert registry.get("a").config.failure_threshold == 7
        custom = registry.get("b", CircuitBreakerConfig(failure_threshold=1))
        assert custom.config.failure_threshold == 1

    def test_registries_are_independent(self, clock):
        one = CircuitBreakerRegistry(clock=clock)
        two = CircuitBreakerRegistry(clock=clock)
        assert one.get("x") is not two.get("x")

    @pytest.mark.asyncio
    async def test_reset_all_and_stats(self, clock):
        registry = CircuitBreakerRegistry(
            CircuitBreakerConfig(failure_threshold=1), clock=clock
        )
        breaker = registry.get("db")
        with pytest.raises(ConnectionError):
            await breaker.execute(fail)
        assert registry.all_stats()["db"]["state"] == "open"

        registry.reset_all()
        assert registry.all_stats()["db"]["state"] == "closed"
