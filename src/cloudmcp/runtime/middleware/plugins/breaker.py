"""Circuit breaker middleware for fault tolerance.

Fails fast while a tool (or the whole server) is known to be failing, instead
of piling more calls onto a broken back-end.

State Machine:
    CLOSED → failure_count reaches failure_threshold → OPEN
    OPEN → recovery_timeout elapsed since last failure → HALF_OPEN (probe allowed)
    HALF_OPEN → success_threshold successes → CLOSED (counters reset)
    HALF_OPEN → failure → OPEN
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Callable

from cloudmcp.foundation.errors import ErrorCode, JsonDict, ToolException, classify_exception
from cloudmcp.runtime.middleware.middleware import Next, Priority
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.core import Tool

_log = get_logger("cloudmcp.middleware.circuit_breaker")


class State(IntEnum):
    """Circuit breaker states."""
    CLOSED, OPEN, HALF_OPEN = 0, 1, 2  # Normal → Failing fast → Testing recovery


@dataclass(slots=True)
class CircuitState:
    """Counters for one breaker scope."""
    state: State = State.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0

    def to_dict(self) -> JsonDict:
        d = asdict(self)
        d["state"] = self.state.name
        return d


class CircuitBreaker:
    """Breaker for a single scope. All transitions happen under one lock.

    Args:
        failure_threshold: Failures in CLOSED before opening (default: 5)
        recovery_timeout: Seconds after the last failure before a probe (default: 60)
        success_threshold: Probe successes in HALF_OPEN before closing (default: 3)
        clock: Monotonic seconds, injectable for tests
    """

    __slots__ = ("failure_threshold", "recovery_timeout", "success_threshold", "_state", "_lock", "_clock")

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 3,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self._state = CircuitState()
        self._lock = threading.Lock()
        self._clock = clock

    @property
    def state(self) -> State:
        with self._lock:
            return self._state.state

    def allow(self) -> bool:
        """Whether a call may proceed now. Moves OPEN to HALF_OPEN once the timeout passed."""
        with self._lock:
            s = self._state
            if s.state is State.OPEN:
                if self._clock() - s.last_failure_time < self.recovery_timeout:
                    return False
                s.state, s.success_count = State.HALF_OPEN, 0
            return True

    def record_success(self) -> None:
        with self._lock:
            s = self._state
            if s.state is State.HALF_OPEN:
                s.success_count += 1
                if s.success_count >= self.success_threshold:
                    self._state = CircuitState()
            elif s.state is State.CLOSED:
                s.failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            s = self._state
            s.failure_count += 1
            s.last_failure_time = self._clock()
            if s.state is State.HALF_OPEN:
                s.state, s.success_count = State.OPEN, 0
            elif s.state is State.CLOSED and s.failure_count >= self.failure_threshold:
                s.state = State.OPEN

    def retry_in(self) -> float:
        """Seconds until an OPEN circuit admits a probe (0 when not OPEN)."""
        with self._lock:
            if self._state.state is not State.OPEN:
                return 0.0
            return max(0.0, self.recovery_timeout - (self._clock() - self._state.last_failure_time))

    def snapshot(self) -> CircuitState:
        with self._lock:
            s = self._state
            return CircuitState(s.state, s.failure_count, s.success_count, s.last_failure_time)

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState()


@dataclass(slots=True)
class CircuitBreakerMiddleware:
    """Fail fast when a tool keeps failing.

    Tracks one breaker per tool (or a single ``"global"`` breaker). An OPEN
    breaker raises ``CIRCUIT_OPEN`` without calling downstream. Errors whose
    code is in ``ignored_codes`` (bad input, cancellation) say nothing about
    the back-end's health and are not counted.

    Args:
        failure_threshold: Failures before opening (default: 5)
        recovery_timeout: Seconds before a half-open probe (default: 60)
        success_threshold: Probe successes to close (default: 3)
        per_tool: One breaker per tool (True) or one global breaker (False)

    Example:
        >>> chain.add(CircuitBreakerMiddleware(failure_threshold=3, recovery_timeout=30))
    """

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3
    per_tool: bool = True
    ignored_codes: frozenset[ErrorCode] = frozenset({ErrorCode.PARAM_VALIDATION, ErrorCode.CANCELLED})
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    name: str = "circuit_breaker"
    priority: int = Priority.CIRCUIT_BREAKER
    enabled: bool = True
    log: BoundLogger = field(default_factory=lambda: _log, repr=False)
    _breakers: dict[str, CircuitBreaker] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def config(self) -> JsonDict:
        return {"failure_threshold": self.failure_threshold, "recovery_timeout": self.recovery_timeout,
                "success_threshold": self.success_threshold, "per_tool": self.per_tool}

    def _key(self, tool_name: str) -> str:
        return tool_name if self.per_tool else "global"

    def breaker(self, tool_name: str) -> CircuitBreaker:
        key = self._key(tool_name)
        with self._lock:
            if (cb := self._breakers.get(key)) is None:
                cb = self._breakers[key] = CircuitBreaker(
                    self.failure_threshold, self.recovery_timeout, self.success_threshold, clock=self.clock,
                )
            return cb

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        cb = self.breaker(tool.name)
        if not cb.allow():
            retry_in = cb.retry_in()
            ctx["circuit_state"] = State.OPEN.name
            self.log.warning("circuit breaker open", tool=tool.name, request_id=ctx.request_id,
                             retry_in_seconds=round(retry_in, 1))
            raise ToolException.create(
                tool.name, f"circuit breaker is open for tool {tool.name}",
                ErrorCode.CIRCUIT_OPEN, wait_seconds=retry_in,
            )

        before = cb.state
        try:
            result = await next(tool, params, ctx)
        except Exception as e:
            if classify_exception(e) not in self.ignored_codes:
                cb.record_failure()
                if (after := cb.state) is not before and after is State.OPEN:
                    self.log.warning("circuit breaker opened", tool=tool.name,
                                     failures=cb.snapshot().failure_count)
            ctx["circuit_state"] = cb.state.name
            raise
        cb.record_success()
        if before is State.HALF_OPEN and cb.state is State.CLOSED:
            self.log.info("circuit breaker closed", tool=tool.name)
        ctx["circuit_state"] = cb.state.name
        return result

    def get_state(self, tool_name: str) -> State:
        """Current state for a tool (for monitoring)."""
        return self.breaker(tool_name).state

    def reset(self, tool_name: str | None = None) -> None:
        """Manually reset one circuit, or all of them."""
        with self._lock:
            targets = ([self._breakers[k]] if tool_name and (k := self._key(tool_name)) in self._breakers
                       else [] if tool_name else list(self._breakers.values()))
        for cb in targets:
            cb.reset()

    def stats(self) -> dict[str, JsonDict]:
        """Per-scope counters (for monitoring)."""
        with self._lock:
            items = list(self._breakers.items())
        return {key: cb.snapshot().to_dict() for key, cb in items}
