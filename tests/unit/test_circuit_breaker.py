"""Tests for the circuit breaker and the resilient gateway.

Tests cover:
- Tripping on error rate once the volume threshold is reached
- Short-circuiting to the fallback while open
- Half-open probes closing or re-opening the circuit, and cancelled half-open calls freeing their slot
- Call timeouts counting as failures
- Registry isolation and manual reset
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from billing_engine.shared.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    ResilientGateway,
    build_default_config,
    skipped_fallback,
)
from billing_engine.shared.core.exceptions import CircuitBreakerError


def make_breaker(clock, **overrides) -> CircuitBreaker:
    config = CircuitBreakerConfig(
        timeout=1.0,
        error_threshold_percentage=50.0,
        reset_timeout=30.0,
        rolling_window=10.0,
        volume_threshold=4,
        **overrides,
    )
    return CircuitBreaker("payments", config, clock=clock)


async def fail():
    raise RuntimeError("processor down")


async def succeed():
    return "ok"


async def run_failures(breaker: CircuitBreaker, count: int) -> None:
    for _ in range(count):
        with pytest.raises(RuntimeError):
            await breaker.execute(fail)


class TestTripping:

    @pytest.mark.asyncio
    async def test_stays_closed_below_volume_threshold(self, clock):
        breaker = make_breaker(clock)

        await run_failures(breaker, 3)

        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_stays_closed_at_exactly_the_threshold(self, clock):
        breaker = make_breaker(clock)

        await breaker.execute(succeed)
        await breaker.execute(succeed)
        await run_failures(breaker, 2)

        # 2 of 4 calls failed: exactly 50%
        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_when_error_rate_exceeds_threshold(self, clock):
        breaker = make_breaker(clock)

        await breaker.execute(succeed)
        await run_failures(breaker, 3)

        assert breaker.state == CircuitBreakerState.OPEN

    @pytest.mark.asyncio
    async def test_stays_closed_below_error_rate(self, clock):
        breaker = make_breaker(clock)

        for _ in range(3):
            await breaker.execute(succeed)
        await run_failures(breaker, 1)

        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_old_outcomes_leave_the_window(self, clock):
        breaker = make_breaker(clock)

        await run_failures(breaker, 3)
        clock.advance(11)
        await breaker.execute(succeed)
        await run_failures(breaker, 1)

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.get_status()["window"]["failures"] == 1


class TestOpenCircuit:

    @pytest.mark.asyncio
    async def test_open_circuit_does_not_call_dependency(self, clock):
        breaker = make_breaker(clock)
        await run_failures(breaker, 4)
        operation = AsyncMock(return_value="ok")

        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.execute(operation)

        operation.assert_not_called()
        assert exc_info.value.status_code == 503
        assert breaker.stats.reject_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_uses_fallback(self, clock):
        breaker = make_breaker(clock)
        await run_failures(breaker, 4)

        result = await breaker.execute(succeed, fallback=lambda error: {"fallback": True})

        assert result == {"fallback": True}
        assert breaker.stats.fallback_count == 1

    @pytest.mark.asyncio
    async def test_async_fallback_is_awaited(self, clock):
        breaker = make_breaker(clock)
        await run_failures(breaker, 4)

        async def fallback(error):
            return "cached"

        assert await breaker.execute(succeed, fallback=fallback) == "cached"

    @pytest.mark.asyncio
    async def test_operation_error_goes_to_fallback_when_given(self, clock):
        breaker = make_breaker(clock)

        result = await breaker.execute(fail, fallback=lambda error: str(error))

        assert result == "processor down"
        assert breaker.stats.failure_count == 1


class TestHalfOpen:

    @pytest.mark.asyncio
    async def test_successful_probe_closes_circuit(self, clock):
        breaker = make_breaker(clock)
        await run_failures(breaker, 4)

        clock.advance(30)
        assert await breaker.execute(succeed) == "ok"

        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.get_status()["window"] == {"successes": 0, "failures": 0, "error_percentage": 0.0}

    @pytest.mark.asyncio
    async def test_failed_probe_reopens_circuit(self, clock):
        breaker = make_breaker(clock)
        await run_failures(breaker, 4)

        clock.advance(30)
        with pytest.raises(RuntimeError):
            await breaker.execute(fail)

        assert breaker.state == CircuitBreakerState.OPEN
        with pytest.raises(CircuitBreakerError):
            await breaker.execute(succeed)

    @pytest.mark.asyncio
    async def test_still_open_before_reset_timeout(self, clock):
        breaker = make_breaker(clock)
        await run_failures(breaker, 4)

        clock.advance(29)

        with pytest.raises(CircuitBreakerError):
            await breaker.execute(succeed)

    @pytest.mark.asyncio
    async def test_only_one_concurrent_probe(self, clock):
        breaker = make_breaker(clock)
        await run_failures(breaker, 4)
        clock.advance(30)
        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probe"

        probe = asyncio.create_task(breaker.execute(slow_probe))
        await asyncio.sleep(0)

        with pytest.raises(CircuitBreakerError):
            await breaker.execute(succeed)

        release.set()
        assert await probe == "probe"
        assert breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_half_open_call_frees_its_slot(self, clock):
        breaker = make_breaker(clock)
        await run_failures(breaker, 4)
        clock.advance(30)

        async def hang():
            await asyncio.Event().wait()

        pending = asyncio.create_task(breaker.execute(hang))
        await asyncio.sleep(0)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        operation = AsyncMock(return_value="ok")
        assert await breaker.execute(operation) == "ok"
        operation.assert_awaited_once()
        assert breaker.state == CircuitBreakerState.CLOSED


class TestTimeouts:

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, clock):
        breaker = CircuitBreaker("payments", CircuitBreakerConfig(timeout=0.01, volume_threshold=1), clock=clock)

        async def hang():
            await asyncio.sleep(1)

        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.execute(hang)

        assert "timeout" in exc_info.value.message.lower()
        assert breaker.stats.timeout_count == 1
        assert breaker.stats.failure_count == 1

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self, clock):
        breaker = CircuitBreaker("slow", CircuitBreakerConfig(timeout=0.01), clock=clock)

        async def hang():
            await asyncio.sleep(1)

        result = await breaker.execute(hang, fallback=skipped_fallback)

        assert result["skipped"] is True


class TestStateListeners:

    @pytest.mark.asyncio
    async def test_listener_notified_on_open(self, clock):
        breaker = make_breaker(clock)
        changes = []
        breaker.add_listener(lambda name, old, new: changes.append((name, old, new)))

        await run_failures(breaker, 4)
        await asyncio.sleep(0)

        assert changes == [("payments", CircuitBreakerState.CLOSED, CircuitBreakerState.OPEN)]


class TestRegistry:

    @pytest.mark.asyncio
    async def test_breakers_are_isolated_per_name(self, clock):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(volume_threshold=1), clock=clock)
        gateway = ResilientGateway(registry)

        with pytest.raises(RuntimeError):
            await gateway.execute("payments", fail)

        assert gateway.get_stats("payments")["state"] == "open"
        assert await gateway.execute("email", succeed) == "ok"
        assert gateway.get_stats("email")["state"] == "closed"

    def test_config_applies_only_on_creation(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)

        first = registry.get_or_create("payments", CircuitBreakerConfig(timeout=5.0))
        second = registry.get_or_create("payments", CircuitBreakerConfig(timeout=99.0))

        assert first is second
        assert second.config.timeout == 5.0

    @pytest.mark.asyncio
    async def test_reset_by_name(self, clock):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(volume_threshold=1), clock=clock)
        breaker = registry.get_or_create("payments")
        with pytest.raises(RuntimeError):
            await breaker.execute(fail)

        assert await registry.reset_by_name("payments") is True
        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.stats.failure_count == 0
        assert await registry.reset_by_name("missing") is False

    def test_get_all_status(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        registry.get_or_create("payments")
        registry.get_or_create("email")

        assert set(registry.get_all_status()) == {"payments", "email"}


class TestDefaultConfig:

    def test_built_from_settings_with_overrides(self):
        class FakeSettings:
            BREAKER_TIMEOUT_SECONDS = 10.0
            BREAKER_ERROR_THRESHOLD_PERCENTAGE = 50.0
            BREAKER_RESET_TIMEOUT_SECONDS = 30.0
            BREAKER_ROLLING_WINDOW_SECONDS = 10.0
            BREAKER_VOLUME_THRESHOLD = 5

        config = build_default_config(FakeSettings(), timeout=45.0)

        assert config.timeout == 45.0
        assert config.reset_timeout == 30.0
        assert config.volume_threshold == 5
