"""MCP integration: FastMCP transport and the pipeline front."""

from cloudmcp.foundation.registry.protocol import TextContent, ToolCallResult, ToolDefinition, ToolHandler, Transport

from .front import PipelineFront, ProviderSink
from .transport import FastMCPTransport, PipelineTool

__all__ = [
    "PipelineFront", "ProviderSink", "FastMCPTransport", "PipelineTool",
    "Transport", "ToolDefinition", "ToolCallResult", "TextContent", "ToolHandler",
]
