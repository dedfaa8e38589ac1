"""Built-in tools: health check, hello and version."""

from .builtins import HealthCheckTool, HelloTool, ServerState, VersionTool, builtin_tools, format_uptime

__all__ = ["HealthCheckTool", "HelloTool", "VersionTool", "ServerState", "builtin_tools", "format_uptime"]
