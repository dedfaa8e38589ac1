"""Core middleware types and chain composition.

Middleware follows continuation-passing style: each middleware receives the
tool, raw params, the execution context and a ``next`` function to call
downstream. Lower priority runs outermost; equal priorities keep registration
order.

Example:
    >>> chain = MiddlewareChain()
    >>> chain.add(LoggingMiddleware())
    >>> chain.add(RetryMiddleware(max_retries=2))
    >>> result = await chain.execute(tool, {"region": "us-east"}, ctx, terminal)
"""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable, Sequence
from enum import IntEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from cloudmcp.foundation.errors import DuplicateRegistrationError, JsonDict
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.core import Tool

# Continuation: (tool, params, ctx) -> result
Next = Callable[["Tool", JsonDict, "ExecutionContext"], Awaitable[object]]


class Priority(IntEnum):
    """Default priorities of the built-in middleware, outermost first."""
    RECOVERY = 1
    SECURITY = 5
    LOGGING = 10
    STRUCTURED_LOGGING = 15
    METRICS = 20
    USAGE = 25
    RATE_LIMIT = 30
    ADAPTIVE_RATE_LIMIT = 35
    RETRY = 40
    CIRCUIT_BREAKER = 45
    ERROR_ENRICHMENT = 50


@runtime_checkable
class Middleware(Protocol):
    """Protocol for tool middleware.

    Attributes:
        name: Unique within a chain
        priority: Lower runs outermost
        enabled: Disabled middleware is skipped at execution time

    Example:
        >>> @dataclass
        ... class TimingMiddleware:
        ...     name: str = "timing"
        ...     priority: int = 12
        ...     enabled: bool = True
        ...
        ...     @property
        ...     def config(self) -> JsonDict:
        ...         return {}
        ...
        ...     async def __call__(self, tool, params, ctx, next):
        ...         start = time.perf_counter()
        ...         try:
        ...             return await next(tool, params, ctx)
        ...         finally:
        ...             ctx["timing_ms"] = (time.perf_counter() - start) * 1000
    """

    name: str
    priority: int
    enabled: bool

    @property
    def config(self) -> JsonDict: ...

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        """Run middleware logic, calling ``next`` to continue downstream."""
        ...


def compose(middleware: Sequence[Middleware], terminal: Next) -> Next:
    """Fold middleware around ``terminal``; the first element ends up outermost."""
    chain = terminal
    for mw in reversed(middleware):
        def make_wrapper(m: Middleware, nxt: Next) -> Next:
            async def wrapped(tool: Tool, params: JsonDict, ctx: ExecutionContext) -> object:
                return await m(tool, params, ctx, nxt)
            return wrapped
        chain = make_wrapper(mw, chain)
    return chain


class MiddlewareChain:
    """Ordered, thread-safe collection of middleware.

    ``execute`` snapshots and sorts the list under the lock, so concurrent
    ``add``/``remove`` calls never affect an invocation that already started.
    """

    __slots__ = ("_middleware", "_lock", "_log")

    def __init__(self, log: BoundLogger | None = None) -> None:
        self._middleware: dict[str, Middleware] = {}
        self._lock = threading.RLock()
        self._log = log or get_logger("cloudmcp.middleware.chain")

    def add(self, middleware: Middleware) -> None:
        """Append middleware. Raises DuplicateRegistrationError on a name clash."""
        with self._lock:
            if middleware.name in self._middleware:
                raise DuplicateRegistrationError("middleware", middleware.name)
            self._middleware[middleware.name] = middleware
        self._log.debug("middleware added", middleware=middleware.name, priority=middleware.priority)

    def remove(self, name: str) -> bool:
        """Remove by name. Returns True if found."""
        with self._lock:
            found = self._middleware.pop(name, None) is not None
        if found:
            self._log.debug("middleware removed", middleware=name)
        return found

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._middleware

    def get(self, name: str) -> Middleware | None:
        with self._lock:
            return self._middleware.get(name)

    def clear(self) -> None:
        with self._lock:
            self._middleware.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._middleware)

    def list(self) -> list[Middleware]:
        """Sorted copy: ascending priority, registration order on ties."""
        with self._lock:
            return sorted(self._middleware.values(), key=lambda m: m.priority)

    __len__ = count

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    async def execute(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, terminal: Next) -> object:
        """Run ``terminal`` wrapped by every enabled middleware."""
        active = [m for m in self.list() if m.enabled]
        if not active:
            return await terminal(tool, params, ctx)
        return await compose(active, terminal)(tool, params, ctx)
