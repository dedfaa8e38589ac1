"""Built-in tools every server exposes, whatever providers are enabled."""

from __future__ import annotations

import platform
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated

from pydantic import BaseModel, ConfigDict, Field

from cloudmcp import __version__
from cloudmcp.foundation.core import BaseTool, EmptyParams, ToolMetadata
from cloudmcp.foundation.errors import JsonDict

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.registry import ToolRegistry
    from cloudmcp.migration import MigrationRouter

API_VERSION = "0.1.0"
PROTOCOL = "mcp"


def format_uptime(seconds: float) -> str:
    """ISO 8601 duration, coarsened as uptime grows: PT42S, PT5M3S, PT2H15M."""
    total = int(seconds)
    if total < 60:
        return f"PT{total}S"
    if total < 3600:
        minutes, secs = divmod(total, 60)
        return f"PT{minutes}M{secs}S" if secs else f"PT{minutes}M"
    hours, minutes = total // 3600, (total % 3600) // 60
    return f"PT{hours}H{minutes}M" if minutes else f"PT{hours}H"


@dataclass(slots=True)
class ServerState:
    """What the built-in tools report about the running server."""

    name: str
    registry: ToolRegistry
    providers: Callable[[], list[str]] = list
    router: MigrationRouter | None = None
    metrics_enabled: bool = False
    metrics_port: int | None = None
    started: float = field(default_factory=time.monotonic)

    def uptime(self) -> float:
        return time.monotonic() - self.started


class HealthCheckTool(BaseTool[EmptyParams]):
    metadata = ToolMetadata(
        name="health_check",
        description="Check server health and list available services",
        category="system",
    )

    def __init__(self, state: ServerState) -> None:
        self.state = state

    async def _run(self, params: EmptyParams, ctx: ExecutionContext) -> JsonDict:
        state = self.state
        tool_names = state.registry.list_names()
        providers = state.providers()
        metrics: JsonDict = {
            "totalTools": len(tool_names),
            "enabled": state.metrics_enabled,
            "backend": "prometheus" if state.metrics_enabled else "log",
        }
        if state.metrics_enabled and state.metrics_port:
            metrics["endpoint"] = f":{state.metrics_port}/metrics"
        if state.router is not None:
            cfg = state.router.global_config()
            metrics["migration"] = {
                "enabled": cfg.migration_enabled,
                "rollbackMode": cfg.rollback_mode,
                "maintenanceMode": cfg.maintenance_mode,
                "trackedTools": len(state.router.tool_names()),
            }
        return {
            "status": "healthy",
            "message": f"{state.name} server running",
            "serverInfo": {
                "name": state.name,
                "version": __version__,
                "protocol": PROTOCOL,
                "apiVersion": API_VERSION,
                "platform": f"{sys.platform}/{platform.machine()}",
            },
            "availableServices": {"toolsRegistered": len(tool_names), "toolNames": tool_names},
            "providers": {"registered": len(providers), "available": providers},
            "timestamp": datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "uptime": format_uptime(state.uptime()),
            "metrics": metrics,
        }


class HelloParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Annotated[str, Field(default="World", description="Name to greet")]


class HelloTool(BaseTool[HelloParams]):
    metadata = ToolMetadata(name="hello", description="Say hello, to check the server responds", category="system")
    params_schema = HelloParams

    async def _run(self, params: HelloParams, ctx: ExecutionContext) -> str:
        return f"Hello, {params.name or 'World'}!"


class VersionTool(BaseTool[EmptyParams]):
    metadata = ToolMetadata(name="version", description="Get server version information", category="system")

    def __init__(self, server_name: str = "CloudMCP") -> None:
        self.server_name = server_name

    async def _run(self, params: EmptyParams, ctx: ExecutionContext) -> JsonDict:
        return {
            "version": __version__,
            "api_version": API_VERSION,
            "name": self.server_name,
            "python": platform.python_version(),
        }


def builtin_tools(state: ServerState) -> list[BaseTool]:
    return [HealthCheckTool(state), HelloTool(), VersionTool(state.name)]
