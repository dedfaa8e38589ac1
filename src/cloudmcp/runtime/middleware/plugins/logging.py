"""Logging middleware family.

Three layers, outermost first:

- ``SecurityLoggingMiddleware`` (5): audit trail for sensitive operations
- ``LoggingMiddleware`` (10): start/end lines with timing
- ``StructuredLoggingMiddleware`` (15): one machine-readable record per call
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cloudmcp.foundation.errors import JsonDict, classify_exception
from cloudmcp.runtime.middleware.middleware import Next, Priority
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.core import Tool

DEFAULT_SENSITIVE_OPERATIONS: frozenset[str] = frozenset({
    "account_switch",
    "firewall_create",
    "firewall_delete",
    "firewall_rule_create",
    "firewall_rule_delete",
    "instance_delete",
    "instance_boot",
    "instance_shutdown",
    "instance_reboot",
    "volume_delete",
    "database_delete",
    "lke_cluster_delete",
    "domain_delete",
    "nodebalancer_delete",
    "object_storage_delete",
})


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(slots=True)
class SecurityLoggingMiddleware:
    """Audit records around sensitive operations.

    A tool is sensitive when its name contains one of the configured
    operations or ends in ``_delete``.
    """

    sensitive_operations: frozenset[str] = DEFAULT_SENSITIVE_OPERATIONS
    name: str = "security_logging"
    priority: int = Priority.SECURITY
    enabled: bool = True
    log: BoundLogger = field(default_factory=lambda: get_logger("cloudmcp.security"), repr=False)

    def __post_init__(self) -> None:
        self.sensitive_operations = frozenset(self.sensitive_operations)

    @classmethod
    def with_extra(cls, *operations: str, **kw: object) -> SecurityLoggingMiddleware:
        """Defaults plus ``operations``."""
        return cls(DEFAULT_SENSITIVE_OPERATIONS | set(operations), **kw)  # type: ignore[arg-type]

    @property
    def config(self) -> JsonDict:
        return {"sensitive_operations": sorted(self.sensitive_operations)}

    def is_sensitive(self, tool_name: str) -> bool:
        return tool_name.endswith("_delete") or any(op in tool_name for op in self.sensitive_operations)

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        if not self.is_sensitive(tool.name):
            return await next(tool, params, ctx)

        fields = {"tool": tool.name, "request_id": ctx.request_id, "user_id": ctx.user_id}
        self.log.info("security audit: operation initiated", **fields, timestamp=_now_iso())
        try:
            result = await next(tool, params, ctx)
        except BaseException as e:
            self.log.warning("security audit: operation failed", **fields, timestamp=_now_iso(),
                             error=str(e) or type(e).__name__)
            raise
        self.log.info("security audit: operation completed", **fields, timestamp=_now_iso())
        return result


@dataclass(slots=True)
class LoggingMiddleware:
    """Log tool execution with timing and result status.

    Parameters and results are only logged when explicitly enabled. Duration
    is stored in ``ctx["duration_ms"]``.

    Args:
        log_parameters: Include raw parameters in the start line
        log_results: Include the result in the end line
        log_level: Level for start/end lines (errors always log at ERROR)

    Example:
        >>> chain.add(LoggingMiddleware(log_parameters=True))
    """

    log_parameters: bool = False
    log_results: bool = False
    log_level: str = "INFO"
    name: str = "logging"
    priority: int = Priority.LOGGING
    enabled: bool = True
    log: BoundLogger = field(default_factory=lambda: get_logger("cloudmcp.middleware"), repr=False)

    @property
    def config(self) -> JsonDict:
        return {"log_parameters": self.log_parameters, "log_results": self.log_results,
                "log_level": self.log_level}

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        level = logging.getLevelName(self.log_level.upper())
        level = level if isinstance(level, int) else logging.INFO
        log = self.log.for_call(ctx).bind(params_count=len(params))
        log.log(level, "tool execution started", **({"params": params} if self.log_parameters else {}))

        start = time.perf_counter()
        try:
            result = await next(tool, params, ctx)
        except BaseException as e:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            ctx["duration_ms"] = duration_ms
            ctx["error_code"] = str(classify_exception(e))
            log.error("tool execution failed", duration_ms=duration_ms,
                      error_code=ctx["error_code"], error=str(e) or type(e).__name__)
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        ctx["duration_ms"] = duration_ms
        extra: JsonDict = {}
        if self.log_results:
            extra["result"] = result if isinstance(result, (str, int, float, bool, dict, list)) else repr(result)
        log.log(level, "tool execution completed", duration_ms=duration_ms, **extra)
        return result


@dataclass(slots=True)
class StructuredLoggingMiddleware:
    """One structured record per invocation, success or failure."""

    name: str = "structured_logging"
    priority: int = Priority.STRUCTURED_LOGGING
    enabled: bool = True
    log: BoundLogger = field(default_factory=lambda: get_logger("cloudmcp.audit"), repr=False)

    @property
    def config(self) -> JsonDict:
        return {}

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        record: JsonDict = {
            "event_type": "tool_execution",
            "tool_name": tool.name,
            "request_id": ctx.request_id,
            "provider": ctx.provider,
            "user_id": ctx.user_id,
            "timestamp": _now_iso(),
            "params_count": len(params),
            "tool_description": tool.description,
        }
        start = time.perf_counter()
        try:
            result = await next(tool, params, ctx)
        except BaseException as e:
            record.update(duration_ms=round((time.perf_counter() - start) * 1000, 2), success=False,
                          error_message=str(e) or type(e).__name__)
            self.log.error("tool execution", **record)
            raise
        record.update(duration_ms=round((time.perf_counter() - start) * 1000, 2), success=True)
        self.log.info("tool execution", **record)
        return result
