"""Metrics middleware for tool execution."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cloudmcp.foundation.errors import JsonDict, categorize_error
from cloudmcp.runtime.middleware.middleware import Next, Priority
from cloudmcp.runtime.observability.metrics import LogMetricsCollector, MetricsCollector, Tags

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.core import Tool


def performance_category(duration_ms: float) -> str:
    """fast < 100ms <= normal < 1s <= slow < 5s <= very_slow"""
    if duration_ms < 100:
        return "fast"
    if duration_ms < 1000:
        return "normal"
    if duration_ms < 5000:
        return "slow"
    return "very_slow"


def base_tags(ctx: ExecutionContext) -> Tags:
    tags = {"tool": ctx.tool_name, "provider": ctx.provider}
    if ctx.user_id:
        tags["user_id"] = ctx.user_id
    return tags


@dataclass(slots=True)
class MetricsMiddleware:
    """Collect execution metrics.

    Emits (with ``<prefix>.`` in front):
    - tool.executions.started / completed / failed: counters
    - tool.parameters.count: histogram
    - tool.execution.duration: timing in ms
    - tool.errors: counter tagged with ``error_type``
    - tool.performance.category: counter tagged with ``category``

    The outcome is recorded on cancellation too.

    Args:
        collector: Metrics sink (defaults to logging)
        prefix: Metric name prefix

    Example:
        >>> chain.add(MetricsMiddleware(PrometheusMetricsCollector()))
    """

    collector: MetricsCollector = field(default_factory=LogMetricsCollector)
    prefix: str = "cloudmcp"
    name: str = "metrics"
    priority: int = Priority.METRICS
    enabled: bool = True

    @property
    def config(self) -> JsonDict:
        return {"prefix": self.prefix, "collector": type(self.collector).__name__}

    def _name(self, metric: str) -> str:
        return f"{self.prefix}.{metric}" if self.prefix else metric

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        tags = base_tags(ctx)
        m = self.collector
        m.counter(self._name("tool.executions.started"), 1, tags)
        m.histogram(self._name("tool.parameters.count"), len(params), tags)

        start = time.perf_counter()
        try:
            result = await next(tool, params, ctx)
        except (Exception, asyncio.CancelledError) as e:
            self._finish(tags, (time.perf_counter() - start) * 1000, e)
            raise
        self._finish(tags, (time.perf_counter() - start) * 1000, None)
        return result

    def _finish(self, tags: Tags, duration_ms: float, error: BaseException | None) -> None:
        m = self.collector
        m.timing(self._name("tool.execution.duration"), duration_ms, tags)
        if error is None:
            m.counter(self._name("tool.executions.completed"), 1, tags)
        else:
            m.counter(self._name("tool.executions.failed"), 1, tags)
            m.counter(self._name("tool.errors"), 1, {**tags, "error_type": categorize_error(error)})
        m.counter(self._name("tool.performance.category"), 1,
                  {**tags, "category": performance_category(duration_ms)})


@dataclass(slots=True)
class UsageMetricsMiddleware:
    """Usage analytics: invocations by hour/day, popularity and successes."""

    collector: MetricsCollector = field(default_factory=LogMetricsCollector)
    name: str = "usage_metrics"
    priority: int = Priority.USAGE
    enabled: bool = True

    @property
    def config(self) -> JsonDict:
        return {"collector": type(self.collector).__name__}

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        now = datetime.now(tz=UTC)
        tags = base_tags(ctx)
        self.collector.counter("usage.tool.invocations", 1,
                               {**tags, "hour": f"{now.hour:02d}", "day": now.strftime("%A").lower()})
        self.collector.counter("usage.tool.popularity", 1, {"tool": ctx.tool_name})
        result = await next(tool, params, ctx)
        self.collector.counter("usage.tool.successes", 1, tags)
        return result
