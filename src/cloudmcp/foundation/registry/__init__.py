"""Tool registry and the transport-facing protocol types."""

from .protocol import TextContent, ToolCallResult, ToolDefinition, ToolHandler, Transport, render_result
from .registry import Executor, ToolRegistry, definition_of, execute_direct

__all__ = [
    "ToolRegistry", "Executor", "definition_of", "execute_direct",
    "ToolDefinition", "ToolCallResult", "TextContent", "ToolHandler", "Transport", "render_result",
]
