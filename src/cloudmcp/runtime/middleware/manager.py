"""Middleware manager: owns a chain, a metrics collector and the presets.

Example:
    >>> manager = MiddlewareManager(collector=PrometheusMetricsCollector())
    >>> manager.configure_production()
    >>> result = await manager.execute_tool(tool, {"linode_id": 123})
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from cloudmcp.foundation.context import ExecutionContext, use_context
from cloudmcp.foundation.errors import JsonDict
from cloudmcp.runtime.middleware.middleware import Middleware, MiddlewareChain
from cloudmcp.runtime.middleware.plugins import (
    AdaptiveRateLimitMiddleware,
    CircuitBreakerMiddleware,
    ErrorEnrichmentMiddleware,
    KeyStrategy,
    LoggingMiddleware,
    MetricsMiddleware,
    RateLimitMiddleware,
    RecoveryMiddleware,
    RetryMiddleware,
    SecurityLoggingMiddleware,
    StructuredLoggingMiddleware,
    UsageMetricsMiddleware,
    system_load,
)
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger
from cloudmcp.runtime.observability.metrics import LogMetricsCollector, MetricsCollector
from cloudmcp.runtime.ratelimit import TokenBucket

if TYPE_CHECKING:
    from cloudmcp.foundation.core import Tool

PRODUCTION_SENSITIVE_EXTRAS = ("instance_delete", "volume_delete", "database_delete")


async def run_tool(tool: Tool, params: JsonDict, ctx: ExecutionContext) -> object:
    """Terminal handler: validate, then execute."""
    tool.validate(params)
    return await tool.execute(params, ctx)


class MiddlewareManager:
    """Chain plus collector, with ready-made configurations.

    ``load_signal`` feeds the adaptive rate limit in the default and production
    presets.
    """

    __slots__ = ("chain", "collector", "load_signal", "_log")

    def __init__(self, collector: MetricsCollector | None = None, log: BoundLogger | None = None,
                 load_signal: Callable[[], float] = system_load) -> None:
        self._log = log or get_logger("cloudmcp.middleware.manager")
        self.chain = MiddlewareChain(self._log)
        self.collector: MetricsCollector = collector or LogMetricsCollector()
        self.load_signal = load_signal

    # ─────────────────────────────────────────────────────────────────
    # Chain management
    # ─────────────────────────────────────────────────────────────────

    def add(self, middleware: Middleware) -> MiddlewareManager:
        self.chain.add(middleware)
        return self

    def remove(self, name: str) -> bool:
        return self.chain.remove(name)

    def has(self, name: str) -> bool:
        return self.chain.has(name)

    def get(self, name: str) -> Middleware | None:
        return self.chain.get(name)

    def list(self) -> list[Middleware]:
        return self.chain.list()

    def count(self) -> int:
        return self.chain.count()

    def clear(self) -> None:
        self.chain.clear()

    # ─────────────────────────────────────────────────────────────────
    # Presets
    # ─────────────────────────────────────────────────────────────────

    def configure_default(self) -> MiddlewareManager:
        """Balanced defaults: per-tool rate limit of 100/min, load-aware limit of 50/min, retries and a breaker."""
        self.clear()
        for mw in (
            RecoveryMiddleware(),
            SecurityLoggingMiddleware(),
            LoggingMiddleware(),
            StructuredLoggingMiddleware(),
            MetricsMiddleware(self.collector),
            UsageMetricsMiddleware(self.collector),
            RateLimitMiddleware(TokenBucket(100, 60.0), KeyStrategy.PER_TOOL),
            AdaptiveRateLimitMiddleware(self.load_signal, TokenBucket(50, 60.0)),
            RetryMiddleware(),
            CircuitBreakerMiddleware(),
            ErrorEnrichmentMiddleware(),
        ):
            self.add(mw)
        self._log.info("middleware configured", preset="default", count=self.count())
        return self

    def configure_production(self) -> MiddlewareManager:
        """Default stack with per-user+provider limits, a stricter breaker and more audited operations."""
        self.configure_default()
        for name in ("rate_limit", "circuit_breaker", "security_logging"):
            self.remove(name)
        for mw in (
            RateLimitMiddleware(TokenBucket(50, 60.0), KeyStrategy.PER_USER_PROVIDER),
            CircuitBreakerMiddleware(failure_threshold=3, recovery_timeout=30.0, success_threshold=2),
            SecurityLoggingMiddleware.with_extra(*PRODUCTION_SENSITIVE_EXTRAS),
        ):
            self.add(mw)
        self._log.info("middleware configured", preset="production", count=self.count())
        return self

    def configure_development(self) -> MiddlewareManager:
        """Verbose logging, generous limits, no retries or breaker."""
        self.clear()
        for mw in (
            RecoveryMiddleware(),
            LoggingMiddleware(log_parameters=True, log_results=True, log_level="DEBUG"),
            MetricsMiddleware(self.collector),
            RateLimitMiddleware(TokenBucket(1000, 60.0), KeyStrategy.PER_TOOL),
        ):
            self.add(mw)
        self._log.info("middleware configured", preset="development", count=self.count())
        return self

    def configure(self, environment: str) -> MiddlewareManager:
        """Preset by environment name: production, development, anything else is default."""
        match environment:
            case "production":
                return self.configure_production()
            case "development":
                return self.configure_development()
        return self.configure_default()

    # ─────────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────────

    async def execute_tool(self, tool: Tool, params: JsonDict | None = None,
                           ctx: ExecutionContext | None = None) -> object:
        """Run ``tool`` through the chain with ``ctx`` installed as the ambient context."""
        params = params or {}
        ctx = ctx or ExecutionContext.create(tool.name)
        with use_context(ctx):
            return await self.chain.execute(tool, params, ctx, run_tool)
