"""Panic recovery and error enrichment.

``RecoveryMiddleware`` sits outermost: anything that escapes the chain without
being part of the error taxonomy is a bug, and it is turned into a ``PANIC``
tool error instead of crashing the transport's request handler.

``ErrorEnrichmentMiddleware`` sits innermost around the terminal handler and
appends tool, provider and request id to taxonomy errors. The message as
raised stays on ``ToolError.cause``, so classification never reads the
request id.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cloudmcp.foundation.errors import CloudMCPError, ErrorCode, JsonDict, ToolError, ToolException
from cloudmcp.runtime.middleware.middleware import Next, Priority
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.core import Tool

_log = get_logger("cloudmcp.middleware.recovery")


@dataclass(slots=True)
class RecoveryMiddleware:
    """Convert unexpected exceptions into ``PANIC`` tool errors.

    The error carries the request id, tool name and formatted stack trace
    (in ``details``). ``BaseException``s that are not ``Exception`` (task
    cancellation, interpreter exit) are left alone.
    """

    name: str = "recovery"
    priority: int = Priority.RECOVERY
    enabled: bool = True
    log: BoundLogger = field(default_factory=lambda: _log, repr=False)

    @property
    def config(self) -> JsonDict:
        return {}

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        try:
            return await next(tool, params, ctx)
        except (ToolException, CloudMCPError):
            raise
        except Exception as e:
            stack = traceback.format_exc()
            payload = str(e) or type(e).__name__
            self.log.error("Panic recovered during tool execution", tool=tool.name,
                           request_id=ctx.request_id, panic=payload, error_type=type(e).__name__,
                           stack=stack)
            ctx["panic"] = payload
            raise ToolException(ToolError.create(
                tool.name, f"tool execution panic: {payload}", ErrorCode.PANIC,
                recoverable=False, details=stack, request_id=ctx.request_id, provider=ctx.provider,
            )) from e


@dataclass(slots=True)
class ErrorEnrichmentMiddleware:
    """Append invocation identity to taxonomy errors, keeping their code."""

    name: str = "error_enrichment"
    priority: int = Priority.ERROR_ENRICHMENT
    enabled: bool = True

    @property
    def config(self) -> JsonDict:
        return {}

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        try:
            return await next(tool, params, ctx)
        except ToolException as e:
            enriched = e.error.with_message(self._enrich(e.error.message, ctx))
            raise ToolException(enriched.model_copy(update={
                "provider": ctx.provider, "request_id": ctx.request_id,
            })) from e
        except CloudMCPError as e:
            raise ToolException(ToolError.create(
                tool.name, self._enrich(str(e), ctx), e.code, recoverable=False,
                provider=ctx.provider, request_id=ctx.request_id, cause=str(e),
            )) from e

    @staticmethod
    def _enrich(message: str, ctx: ExecutionContext) -> str:
        return (f"Tool execution failed: {message} "
                f"(tool: {ctx.tool_name}, provider: {ctx.provider}, request_id: {ctx.request_id})")
