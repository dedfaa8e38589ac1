"""Rate limiting middleware.

Both middleware consult a keyed ``RateLimiter`` and fail fast with a typed error
carrying the wait hint. Neither sleeps; the caller decides whether to come back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Callable

import psutil

from cloudmcp.foundation.errors import ErrorCode, JsonDict, ToolException
from cloudmcp.runtime.middleware.middleware import Next, Priority
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger
from cloudmcp.runtime.ratelimit import RateLimiter, TokenBucket

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.core import Tool

_log = get_logger("cloudmcp.middleware.rate_limit")


class KeyStrategy(StrEnum):
    """How the rate-limit key is derived from an invocation."""
    PER_TOOL = "per_tool"
    PER_USER = "per_user"
    PER_PROVIDER = "per_provider"
    PER_USER_PROVIDER = "per_user_provider"
    GLOBAL = "global"


def rate_limit_key(strategy: KeyStrategy, ctx: ExecutionContext) -> str:
    """Limiter key for ``ctx`` under ``strategy``; missing users degrade to the coarser key."""
    tool, user, provider = ctx.tool_name, ctx.user_id, ctx.provider
    match strategy:
        case KeyStrategy.PER_USER:
            return f"{user}:{tool}" if user else tool
        case KeyStrategy.PER_PROVIDER:
            return f"{provider}:{tool}"
        case KeyStrategy.PER_USER_PROVIDER:
            return f"{user}:{provider}:{tool}" if user else f"{provider}:{tool}"
        case KeyStrategy.GLOBAL:
            return "global"
    return tool


@dataclass(slots=True)
class RateLimitMiddleware:
    """Reject calls that exceed the limiter's budget.

    Args:
        limiter: Keyed limiter (default: 100 calls per minute token bucket)
        key_strategy: How to build the key (default: per tool)

    Example:
        >>> chain.add(RateLimitMiddleware(TokenBucket(rate=2, window=1.0), KeyStrategy.PER_USER))
    """

    limiter: RateLimiter = field(default_factory=lambda: TokenBucket(100, 60.0))
    key_strategy: KeyStrategy = KeyStrategy.PER_TOOL
    name: str = "rate_limit"
    priority: int = Priority.RATE_LIMIT
    enabled: bool = True
    log: BoundLogger = field(default_factory=lambda: _log, repr=False)

    @property
    def config(self) -> JsonDict:
        return {"limiter": repr(self.limiter), "key_strategy": str(self.key_strategy)}

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        key = rate_limit_key(self.key_strategy, ctx)
        if wait := self.limiter.reserve(key):
            self.log.warning("rate limit exceeded", tool=tool.name, key=key,
                             wait_seconds=round(wait, 3), request_id=ctx.request_id)
            raise ToolException.create(
                tool.name, f'rate limit exceeded for tool "{tool.name}", please wait {wait:.2f}s',
                ErrorCode.RATE_LIMITED, wait_seconds=wait,
            )
        return await next(tool, params, ctx)


def system_load() -> float:
    """One-minute load average per CPU, clamped to [0, 1]."""
    one_minute, _, _ = psutil.getloadavg()
    return max(0.0, min(1.0, one_minute / (psutil.cpu_count() or 1)))


def load_band(load: float) -> int:
    """0..10 band for a load signal in [0, 1]."""
    return max(0, min(10, int(load * 10)))


@dataclass(slots=True)
class AdaptiveRateLimitMiddleware:
    """Rate limiting that tightens under system load.

    The limiter key includes the current load band, so each band has its own
    bucket. When the limiter asks for a wait while load is above
    ``threshold``, the wait grows by ``(load - threshold)`` and the call fails
    with ``SYSTEM_LOAD_HIGH``.

    Args:
        load_signal: Returns current load in [0, 1] (default: ``system_load``)
        limiter: Keyed limiter (default: 50 calls per minute)
        threshold: Load above which waits are stretched (default: 0.8)
    """

    load_signal: Callable[[], float] = system_load
    limiter: RateLimiter = field(default_factory=lambda: TokenBucket(50, 60.0))
    threshold: float = 0.8
    name: str = "adaptive_rate_limit"
    priority: int = Priority.ADAPTIVE_RATE_LIMIT
    enabled: bool = True
    log: BoundLogger = field(default_factory=lambda: _log, repr=False)

    @property
    def config(self) -> JsonDict:
        return {"limiter": repr(self.limiter), "threshold": self.threshold}

    def key_for(self, ctx: ExecutionContext, load: float) -> str:
        base = f"{ctx.user_id}:{ctx.tool_name}" if ctx.user_id else ctx.tool_name
        return f"{base}:load_{load_band(load)}"

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        load = self.load_signal()
        key = self.key_for(ctx, load)
        ctx["system_load"] = load
        if wait := self.limiter.reserve(key):
            if load > self.threshold:
                wait *= 1 + (load - self.threshold)
                self.log.warning("adaptive rate limit exceeded", tool=tool.name, load=load,
                                 wait_seconds=round(wait, 3), request_id=ctx.request_id)
                raise ToolException.create(
                    tool.name, f"rate limit exceeded due to high system load ({load:.2f})",
                    ErrorCode.SYSTEM_LOAD_HIGH, wait_seconds=wait,
                )
            raise ToolException.create(
                tool.name, f'rate limit exceeded for tool "{tool.name}", please wait {wait:.2f}s',
                ErrorCode.RATE_LIMITED, wait_seconds=wait,
            )
        return await next(tool, params, ctx)
