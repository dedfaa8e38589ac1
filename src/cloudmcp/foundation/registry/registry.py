"""Central registry for tool lookup and transport publication.

The registry owns every tool the server exposes. Registering a tool also
publishes it to the MCP transport, exactly once, with a handler that takes raw
arguments and returns a ``ToolCallResult``.

What the handler does is pluggable: by default it validates and executes the
tool directly; the pipeline front installs an executor that routes the call
through the middleware chain instead.
"""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable, Iterable, Iterator

from cloudmcp.foundation.context import ExecutionContext, use_context
from cloudmcp.foundation.core import Tool
from cloudmcp.foundation.errors import (
    CloudMCPError,
    DuplicateRegistrationError,
    JsonDict,
    ToolException,
    ToolNotFoundError,
)
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

from .protocol import ToolCallResult, ToolDefinition, ToolHandler, Transport, render_result

Executor = Callable[[Tool, JsonDict], Awaitable[ToolCallResult]]


def definition_of(tool: Tool) -> ToolDefinition:
    return ToolDefinition(name=tool.name, description=tool.description, input_schema=tool.input_schema)


async def execute_direct(tool: Tool, arguments: JsonDict) -> ToolCallResult:
    """Validate and execute without middleware."""
    ctx = ExecutionContext.create(tool.name)
    try:
        with use_context(ctx):
            tool.validate(arguments)
            return ToolCallResult.text(render_result(await tool.execute(arguments, ctx)))
    except ToolException as e:
        return ToolCallResult.error(e.error.render())
    except CloudMCPError as e:
        return ToolCallResult.error(f"[{e.code}] {e}")


class ToolRegistry:
    """Thread-safe ``name -> Tool`` mapping.

    Example:
        >>> registry = ToolRegistry(transport)
        >>> registry.register(hello_tool)
        >>> registry.get("hello").description
        'Say hello'
    """

    __slots__ = ("_tools", "_lock", "_transport", "_executor", "_log")

    def __init__(
        self,
        transport: Transport | None = None,
        executor: Executor | None = None,
        log: BoundLogger | None = None,
    ) -> None:
        self._tools: dict[str, Tool] = {}
        self._lock = threading.RLock()
        self._transport = transport
        self._executor: Executor = executor or execute_direct
        self._log = log or get_logger("cloudmcp.registry")

    @property
    def transport(self) -> Transport | None:
        return self._transport

    def set_executor(self, executor: Executor) -> None:
        """Replace the executor. Handlers look it up per call, so this applies to published tools too."""
        self._executor = executor

    def register(self, tool: Tool) -> None:
        """Register and publish a tool.

        Raises:
            ValueError: ``tool`` is None
            DuplicateRegistrationError: a tool with the same name exists
        """
        if tool is None:
            raise ValueError("cannot register a nil tool")
        name = tool.name
        with self._lock:
            if name in self._tools:
                raise DuplicateRegistrationError("tool", name)
            self._tools[name] = tool
            if self._transport is not None:
                try:
                    self._transport.add_tool(definition_of(tool), self._handler_for(tool))
                except Exception:
                    del self._tools[name]
                    raise
        self._log.debug("tool registered", tool=name)

    def register_many(self, tools: Iterable[Tool]) -> None:
        """Register in order, stopping at the first failure."""
        for tool in tools:
            self.register(tool)

    def _handler_for(self, tool: Tool) -> ToolHandler:
        async def handler(arguments: JsonDict) -> ToolCallResult:
            return await self._executor(tool, arguments or {})
        return handler

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    def get(self, name: str) -> Tool | None:
        with self._lock:
            return self._tools.get(name)

    def require(self, name: str) -> Tool:
        """Get tool by name, raises ToolNotFoundError if absent."""
        if (tool := self.get(name)) is None:
            raise ToolNotFoundError(name)
        return tool

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def list_names(self) -> list[str]:
        with self._lock:
            return sorted(self._tools)

    def count(self) -> int:
        with self._lock:
            return len(self._tools)

    def get_all_definitions(self) -> list[ToolDefinition]:
        with self._lock:
            tools = sorted(self._tools.values(), key=lambda t: t.name)
        return [definition_of(t) for t in tools]

    def clear(self) -> None:
        """Drop every tool. Published handlers stay with the transport; for tests only."""
        with self._lock:
            self._tools.clear()

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return self.count()

    def __iter__(self) -> Iterator[Tool]:
        with self._lock:
            return iter(list(self._tools.values()))
