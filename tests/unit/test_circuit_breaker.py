"""Unit tests for the async circuit breaker."""

import asyncio

import pytest

from hybrid_idp.core.exceptions import ExternalServiceError
from hybrid_idp.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def failing_func():
    """Always fails."""
    raise RuntimeError("Service unavailable")


async def succeeding_func():
    """Always succeeds."""
    return "success"


class TestCircuitBreakerBasics:
    """Tests for basic circuit breaker functionality."""

    def test_circuit_breaker_creation(self):
        cb = CircuitBreaker("test", CircuitBreakerConfig())
        assert cb.name == "test"
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    @pytest.mark.asyncio
    async def test_successful_call_in_closed_state(self):
        cb = CircuitBreaker("test", CircuitBreakerConfig())
        result = await cb.call(succeeding_func)
        assert result == "success"
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    @pytest.mark.asyncio
    async def test_passes_arguments_through(self):
        async def add(a, b, scale=1):
            return (a + b) * scale

        cb = CircuitBreaker("test")
        assert await cb.call(add, 2, 3, scale=10) == 50


class TestCircuitBreakerStateTransitions:
    """Tests for circuit breaker state transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_failure_threshold(self):
        cb = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=3))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await cb.call(failing_func)

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 2

        with pytest.raises(RuntimeError):
            await cb.call(failing_func)

        assert cb.state == CircuitState.OPEN
        assert cb.failure_count == 3

    @pytest.mark.asyncio
    async def test_rejects_requests_when_open(self):
        clock = FakeClock()
        cb = CircuitBreaker("ASSISTED", CircuitBreakerConfig(failure_threshold=1), clock=clock)

        with pytest.raises(RuntimeError):
            await cb.call(failing_func)
        assert cb.state == CircuitState.OPEN

        with pytest.raises(ExternalServiceError) as exc_info:
            await cb.call(succeeding_func)

        error = exc_info.value
        assert error.error_type == "circuit_open"
        assert error.http_status == 503
        assert error.error_code == "ASSISTED_CIRCUIT_OPEN"
        assert error.details["retry_after"] == 60

    @pytest.mark.asyncio
    async def test_success_resets_failure_count_when_closed(self):
        cb = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=3))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await cb.call(failing_func)
        await cb.call(succeeding_func)

        assert cb.failure_count == 0
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_after_timeout_then_closes(self):
        clock = FakeClock()
        cb = CircuitBreaker(
            "test", CircuitBreakerConfig(failure_threshold=1, timeout_seconds=30), clock=clock
        )

        with pytest.raises(RuntimeError):
            await cb.call(failing_func)
        assert cb.state == CircuitState.OPEN

        clock.advance(30)
        result = await cb.call(succeeding_func)

        assert result == "success"
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    @pytest.mark.asyncio
    async def test_failure_in_half_open_reopens(self):
        clock = FakeClock()
        cb = CircuitBreaker(
            "test", CircuitBreakerConfig(failure_threshold=1, timeout_seconds=10), clock=clock
        )

        with pytest.raises(RuntimeError):
            await cb.call(failing_func)
        clock.advance(10)

        with pytest.raises(RuntimeError):
            await cb.call(failing_func)

        assert cb.state == CircuitState.OPEN
        with pytest.raises(ExternalServiceError):
            await cb.call(succeeding_func)

    @pytest.mark.asyncio
    async def test_success_threshold_in_half_open(self):
        clock = FakeClock()
        cb = CircuitBreaker(
            "test",
            CircuitBreakerConfig(failure_threshold=1, timeout_seconds=5, success_threshold=2),
            clock=clock,
        )

        with pytest.raises(RuntimeError):
            await cb.call(failing_func)
        clock.advance(5)

        await cb.call(succeeding_func)
        assert cb.state == CircuitState.HALF_OPEN

        await cb.call(succeeding_func)
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancellation_is_not_a_failure(self):
        cb = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1))

        async def slow():
            await asyncio.sleep(10)

        task = asyncio.ensure_future(cb.call(slow))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0


class TestCircuitBreakerMonitoring:
    """Tests for reset and state reporting."""

    @pytest.mark.asyncio
    async def test_manual_reset(self):
        cb = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1))
        with pytest.raises(RuntimeError):
            await cb.call(failing_func)
        assert cb.state == CircuitState.OPEN

        cb.reset()

        assert cb.state == CircuitState.CLOSED
        assert await cb.call(succeeding_func) == "success"

    @pytest.mark.asyncio
    async def test_get_state(self):
        clock = FakeClock()
        cb = CircuitBreaker(
            "monitor", CircuitBreakerConfig(failure_threshold=1, timeout_seconds=60), clock=clock
        )
        assert cb.get_state() == {
            "name": "monitor",
            "state": "closed",
            "failure_count": 0,
            "success_count": 0,
            "time_until_retry": 0,
        }

        with pytest.raises(RuntimeError):
            await cb.call(failing_func)
        clock.advance(15)

        state = cb.get_state()
        assert state["state"] == "open"
        assert state["failure_count"] == 1
        assert state["time_until_retry"] == 45
