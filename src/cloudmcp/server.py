"""Server assembly and process entry point.

``CloudMCPServer`` wires settings into the runtime: logging, the metrics
collector, the middleware preset, the pipeline front with the built-in tools,
the migration router and every enabled provider. ``main`` maps failures onto
exit codes:

- 0: normal shutdown
- 1: configuration error (settings or provider configuration)
- 2: initialization failure
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Mapping

from pydantic import ValidationError

from cloudmcp import __version__
from cloudmcp.ext.mcp import FastMCPTransport, PipelineFront
from cloudmcp.foundation.config import ServerSettings
from cloudmcp.foundation.errors import CloudMCPError, ErrorCode
from cloudmcp.foundation.registry import Transport
from cloudmcp.migration import MigrationRouter
from cloudmcp.providers import CloudProvider, MappingConfig, ProviderRegistry
from cloudmcp.providers.linode import PROVIDER_NAME as LINODE, LinodeProviderFactory
from cloudmcp.runtime.middleware import MiddlewareManager
from cloudmcp.runtime.observability.logging import configure_logging, get_logger, timed
from cloudmcp.runtime.observability.metrics import (
    LogMetricsCollector,
    MetricsCollector,
    PrometheusMetricsCollector,
)
from cloudmcp.tools import ServerState, builtin_tools

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_INIT = 2

CONFIG_ERROR_CODES = frozenset({ErrorCode.CONFIG_MISSING_KEYS, ErrorCode.PROVIDER_NOT_REGISTERED})

log = get_logger("cloudmcp.server")


def default_provider_registry(router: MigrationRouter | None = None) -> ProviderRegistry:
    """Registry with every bundled provider."""
    registry = ProviderRegistry()
    registry.register(LINODE, LinodeProviderFactory(router=router))
    return registry


class CloudMCPServer:
    """One configured server instance.

    Args:
        settings: Server settings
        provider_registry: Provider factories (bundled providers by default)
        transport: MCP transport (FastMCP over stdio by default)
        environ: Source of provider configuration (``os.environ`` by default)
    """

    def __init__(self, settings: ServerSettings, provider_registry: ProviderRegistry | None = None,
                 transport: Transport | None = None, *, environ: Mapping[str, str] | None = None) -> None:
        self.settings = settings
        configure_logging(settings.log_format, settings.log_level)
        self.collector: MetricsCollector = (
            PrometheusMetricsCollector() if settings.enable_metrics else LogMetricsCollector()
        )
        self.router = MigrationRouter.with_default_batches() if settings.enable_migration else None
        self.providers = provider_registry or default_provider_registry(self.router)
        self.manager = MiddlewareManager(self.collector).configure(settings.environment)
        self.transport = transport or FastMCPTransport(settings.server_name, __version__)
        self.front = PipelineFront(self.transport, self.manager)
        self.active: list[CloudProvider] = []
        self._environ = environ
        self.state = ServerState(
            name=settings.server_name, registry=self.front.registry,
            providers=lambda: [p.name for p in self.active], router=self.router,
            metrics_enabled=settings.enable_metrics, metrics_port=settings.metrics_port,
        )
        for tool in builtin_tools(self.state):
            self.front.register(tool, provider="system")

    @timed(log, event="server startup")
    async def start(self) -> None:
        """Bring up every enabled provider: validate, create, initialize, register tools."""
        if not self.settings.provider_names:
            log.warning("no providers enabled, serving built-in tools only", setting="CLOUD_MCP_PROVIDERS",
                        available=self.providers.list())
        prefix = self.settings.provider_config_prefix
        for name in self.settings.provider_names:
            config = MappingConfig.from_env(self._environ if self._environ is not None else os.environ, prefix)
            self.providers.validate_provider(name, config)
            provider = self.providers.get(name)
            await provider.initialize(config)
            self.active.append(provider)
            count = provider.register_tools(self.front.sink_for(name))
            log.info("provider ready", provider=name, tools=count)

        if isinstance(self.collector, PrometheusMetricsCollector):
            self.collector.start_server(self.settings.metrics_port)
            log.info("metrics server started", port=self.settings.metrics_port)
        log.info("server started", name=self.settings.server_name, version=__version__,
                 environment=self.settings.environment, tools=self.front.registry.count())

    async def run(self) -> None:
        """Start, serve stdio until the client disconnects, then shut down."""
        try:
            await self.start()
            await self.transport.serve_stdio()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop providers in reverse start order; a failing provider does not stop the others."""
        while self.active:
            provider = self.active.pop()
            try:
                await provider.shutdown()
            except Exception as e:
                log.error("provider shutdown failed", provider=provider.name, error=str(e))
        log.info("server stopped")


def exit_code_for(exc: BaseException) -> int:
    match exc:
        case ValidationError():
            return EXIT_CONFIG
        case CloudMCPError() if exc.code in CONFIG_ERROR_CODES:
            return EXIT_CONFIG
    return EXIT_INIT


def main() -> int:
    try:
        settings = ServerSettings()
    except ValidationError as e:
        print(f"cloudmcp: invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        server = CloudMCPServer(settings)
        asyncio.run(server.run())
    except KeyboardInterrupt:
        return EXIT_OK
    except Exception as e:
        code = exit_code_for(e)
        log.error("server failed", error=str(e), error_type=type(e).__name__, exit_code=code)
        return code
    return EXIT_OK
