"""FastMCP-backed transport.

Each published tool becomes a ``fastmcp.tools.Tool`` whose ``run`` calls the
registry's handler. FastMCP only sees the finished envelope: success results
become text content, error results are raised as ``fastmcp`` tool errors so the
SDK answers with ``isError: true`` and the error text.

Example:
    >>> transport = FastMCPTransport("CloudMCP", "0.1.0")
    >>> registry = ToolRegistry(transport)
    >>> await transport.serve_stdio()
"""

from __future__ import annotations

from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError as MCPToolError
from fastmcp.tools import Tool as MCPTool
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent as MCPTextContent
from pydantic import PrivateAttr

from cloudmcp.foundation.registry.protocol import ToolDefinition, ToolHandler


class PipelineTool(MCPTool):
    """FastMCP tool that delegates to a registry handler."""

    _handler: ToolHandler = PrivateAttr()

    @classmethod
    def create(cls, definition: ToolDefinition, handler: ToolHandler) -> PipelineTool:
        tool = cls(name=definition.name, description=definition.description,
                   parameters=definition.input_schema, output_schema=None)
        tool._handler = handler
        return tool

    async def run(self, arguments: dict[str, Any]) -> ToolResult:
        result = await self._handler(arguments or {})
        if result.is_error:
            raise MCPToolError(result.first_text)
        return ToolResult(content=[MCPTextContent(type="text", text=c.text) for c in result.content])


class FastMCPTransport:
    """``Transport`` over a ``FastMCP`` server instance."""

    __slots__ = ("_mcp", "version")

    def __init__(self, name: str, version: str) -> None:
        self._mcp = FastMCP(name, version=version)
        self.version = version

    @property
    def name(self) -> str:
        return self._mcp.name

    @property
    def fastmcp(self) -> FastMCP:
        """Underlying FastMCP instance."""
        return self._mcp

    def add_tool(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        self._mcp.add_tool(PipelineTool.create(definition, handler))

    async def serve_stdio(self) -> None:
        await self._mcp.run_async(transport="stdio")
