"""Pipeline front: the only place tool errors become MCP envelopes.

Every call, whether it arrives through the transport or through
``call_tool``, gets a fresh ``ExecutionContext`` and runs through the
middleware manager's chain. Results are rendered as envelope text (strings
as-is, everything else as JSON); taxonomy errors become error envelopes.
"""

from __future__ import annotations

from cloudmcp.foundation.context import ExecutionContext
from cloudmcp.foundation.core import Tool
from cloudmcp.foundation.errors import CloudMCPError, ErrorCode, JsonDict, ToolError, ToolException
from cloudmcp.foundation.registry import (
    ToolCallResult,
    ToolDefinition,
    ToolRegistry,
    Transport,
    render_result,
)
from cloudmcp.runtime.middleware import MiddlewareManager
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger, log_context


class PipelineFront:
    """Owns the tool registry and routes every call through the middleware chain.

    Args:
        transport: MCP transport tools are published to (None for in-process use)
        manager: Configured middleware manager

    Example:
        >>> front = PipelineFront(transport, MiddlewareManager().configure_default())
        >>> front.register(hello)
        >>> (await front.call_tool("hello", {"name": "Ada"})).first_text
        'Hello, Ada!'
    """

    __slots__ = ("registry", "manager", "_providers", "_log")

    def __init__(self, transport: Transport | None, manager: MiddlewareManager,
                 log: BoundLogger | None = None) -> None:
        self.manager = manager
        self.registry = ToolRegistry(transport, executor=self._execute)
        self._providers: dict[str, str] = {}
        self._log = log or get_logger("cloudmcp.front")

    def register(self, tool: Tool, *, provider: str | None = None) -> None:
        """Register and publish a tool; ``provider`` pins its provider id."""
        self.registry.register(tool)
        if provider:
            self._providers[tool.name] = provider

    def list_tools(self) -> list[ToolDefinition]:
        return self.registry.get_all_definitions()

    async def call_tool(self, name: str, arguments: JsonDict | None = None,
                        user_id: str | None = None) -> ToolCallResult:
        if (tool := self.registry.get(name)) is None:
            self._log.warning("unknown tool requested", tool=name)
            return ToolCallResult.error(ToolError.create(
                name or "unknown", f"tool {name!r} not found", ErrorCode.TOOL_NOT_FOUND, recoverable=False,
            ).render())
        return await self._execute(tool, arguments or {}, user_id)

    async def _execute(self, tool: Tool, arguments: JsonDict, user_id: str | None = None) -> ToolCallResult:
        ctx = ExecutionContext.create(tool.name, provider=self._providers.get(tool.name), user_id=user_id)
        try:
            with log_context(request_id=ctx.request_id):
                result = await self.manager.execute_tool(tool, arguments, ctx)
        except ToolException as e:
            return ToolCallResult.error(e.error.render())
        except CloudMCPError as e:
            return ToolCallResult.error(f"[{e.code}] {e}")
        return ToolCallResult.text(render_result(result))

    def sink_for(self, provider: str) -> ProviderSink:
        """A ``ToolSink`` that registers tools pinned to ``provider``."""
        return ProviderSink(self, provider)


class ProviderSink:
    __slots__ = ("front", "provider")

    def __init__(self, front: PipelineFront, provider: str) -> None:
        self.front, self.provider = front, provider

    def register(self, tool: Tool) -> None:
        self.front.register(tool, provider=self.provider)
