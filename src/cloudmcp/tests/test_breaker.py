"""Tests for the circuit breaker state machine and middleware."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from cloudmcp.foundation.context import ExecutionContext
from cloudmcp.foundation.errors import ErrorCode, ToolException
from cloudmcp.foundation.testing import MockTool
from cloudmcp.runtime.middleware import CircuitBreaker, CircuitBreakerMiddleware, MiddlewareChain, State, run_tool


@dataclass
class SecondsClock:
    now: float = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def transport_error(tool: str = "api") -> ToolException:
    return ToolException.create(tool, "upstream 503", ErrorCode.RETRYABLE_TRANSPORT)


# ═════════════════════════════════════════════════════════════════════════════
# State Machine
# ═════════════════════════════════════════════════════════════════════════════


def test_opens_after_threshold_failures() -> None:
    cb = CircuitBreaker(failure_threshold=3, recovery_timeout=10, success_threshold=2, clock=SecondsClock())

    for _ in range(2):
        cb.record_failure()
    assert cb.state is State.CLOSED
    cb.record_failure()

    assert cb.state is State.OPEN
    assert not cb.allow()


def test_success_in_closed_resets_failure_count() -> None:
    cb = CircuitBreaker(failure_threshold=2, clock=SecondsClock())
    cb.record_failure()
    cb.record_success()
    cb.record_failure()

    assert cb.state is State.CLOSED
    assert cb.snapshot().failure_count == 1


def test_half_open_after_recovery_timeout() -> None:
    clock = SecondsClock()
    cb = CircuitBreaker(failure_threshold=1, recovery_timeout=10, success_threshold=2, clock=clock)
    cb.record_failure()

    clock.advance(9.9)
    assert not cb.allow()
    assert cb.retry_in() == pytest.approx(0.1)

    clock.advance(0.1)
    assert cb.allow()
    assert cb.state is State.HALF_OPEN


def test_half_open_closes_after_success_threshold() -> None:
    clock = SecondsClock()
    cb = CircuitBreaker(failure_threshold=1, recovery_timeout=10, success_threshold=2, clock=clock)
    cb.record_failure()
    clock.advance(10)
    cb.allow()

    cb.record_success()
    assert cb.state is State.HALF_OPEN
    cb.record_success()

    snap = cb.snapshot()
    assert snap.state is State.CLOSED
    assert (snap.failure_count, snap.success_count) == (0, 0)


def test_half_open_failure_reopens() -> None:
    clock = SecondsClock()
    cb = CircuitBreaker(failure_threshold=1, recovery_timeout=10, success_threshold=2, clock=clock)
    cb.record_failure()
    clock.advance(10)
    cb.allow()

    cb.record_failure()

    assert cb.state is State.OPEN
    assert not cb.allow()
    assert cb.retry_in() == pytest.approx(10)


def test_retry_in_is_zero_when_not_open() -> None:
    assert CircuitBreaker().retry_in() == 0.0


# ═════════════════════════════════════════════════════════════════════════════
# Middleware
# ═════════════════════════════════════════════════════════════════════════════


async def call(chain: MiddlewareChain, tool: MockTool, params: dict | None = None) -> object:
    return await chain.execute(tool, params or {}, ExecutionContext.create(tool.name), run_tool)


@pytest.mark.asyncio
async def test_open_circuit_fails_fast_then_recovers() -> None:
    clock = SecondsClock()
    mw = CircuitBreakerMiddleware(failure_threshold=2, recovery_timeout=5, success_threshold=1, clock=clock)
    chain = MiddlewareChain()
    chain.add(mw)
    tool = MockTool("api", outcomes=[transport_error(), transport_error()], return_value="ok")

    for _ in range(2):
        with pytest.raises(ToolException):
            await call(chain, tool)
    assert mw.get_state("api") is State.OPEN

    with pytest.raises(ToolException) as exc_info:
        await call(chain, tool)
    err = exc_info.value.error
    assert err.code is ErrorCode.CIRCUIT_OPEN
    assert err.message == "circuit breaker is open for tool api"
    assert err.wait_seconds == pytest.approx(5)
    assert tool.call_count == 2

    clock.advance(5)
    assert await call(chain, tool) == "ok"
    assert mw.get_state("api") is State.CLOSED


@pytest.mark.asyncio
async def test_validation_errors_do_not_trip_the_breaker() -> None:
    mw = CircuitBreakerMiddleware(failure_threshold=1, clock=SecondsClock())
    chain = MiddlewareChain()
    chain.add(mw)
    tool = MockTool("needs_region", required=("region",))

    for _ in range(3):
        with pytest.raises(ToolException):
            await call(chain, tool)

    assert mw.get_state("needs_region") is State.CLOSED


@pytest.mark.asyncio
async def test_breakers_are_per_tool() -> None:
    mw = CircuitBreakerMiddleware(failure_threshold=1, clock=SecondsClock())
    chain = MiddlewareChain()
    chain.add(mw)

    with pytest.raises(ToolException):
        await call(chain, MockTool("bad", outcomes=[transport_error("bad")]))

    assert await call(chain, MockTool("good")) == "mock result"
    assert mw.stats()["bad"]["state"] == "OPEN"
    assert mw.stats()["good"]["state"] == "CLOSED"


@pytest.mark.asyncio
async def test_global_breaker_is_shared() -> None:
    mw = CircuitBreakerMiddleware(failure_threshold=1, per_tool=False, clock=SecondsClock())
    chain = MiddlewareChain()
    chain.add(mw)

    with pytest.raises(ToolException):
        await call(chain, MockTool("bad", outcomes=[transport_error("bad")]))
    with pytest.raises(ToolException) as exc_info:
        await call(chain, MockTool("good"))

    assert exc_info.value.code is ErrorCode.CIRCUIT_OPEN
    assert list(mw.stats()) == ["global"]


@pytest.mark.asyncio
async def test_manual_reset() -> None:
    mw = CircuitBreakerMiddleware(failure_threshold=1, clock=SecondsClock())
    chain = MiddlewareChain()
    chain.add(mw)
    with pytest.raises(ToolException):
        await call(chain, MockTool("bad", outcomes=[transport_error("bad")]))

    mw.reset("bad")

    assert mw.get_state("bad") is State.CLOSED
