"""Tool abstractions: protocol, base class and function decorator."""

from .base import BaseTool, EmptyParams, Tool, ToolMetadata
from .decorator import FunctionTool, tool

__all__ = ["Tool", "BaseTool", "ToolMetadata", "EmptyParams", "FunctionTool", "tool"]
