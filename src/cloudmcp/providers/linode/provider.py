"""Linode cloud provider and its factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cloudmcp.foundation.errors import ConfigMissingKeysError, ProviderNotInitializedError
from cloudmcp.migration import MigrationDispatchTool
from cloudmcp.providers.base import Capability, CloudProvider, ProviderMetadata, check_required_config

from .accounts import AccountManager, parse_accounts
from .client import LinodeClient
from .service import DEFAULT_CACHE_TTL, ClientFactory, LinodeService
from .tools import NATIVE_TOOLS, SERVICE_TOOLS

if TYPE_CHECKING:
    from cloudmcp.foundation.core import Tool
    from cloudmcp.migration import MigrationRouter
    from cloudmcp.providers.config import Config
    from cloudmcp.runtime.observability.logging import BoundLogger

PROVIDER_NAME = "linode"

LINODE_METADATA = ProviderMetadata(
    name=PROVIDER_NAME,
    display_name="Linode Cloud",
    version="1.0.0",
    description="Linode cloud infrastructure management through MCP tools",
    author="CloudMCP Team",
    homepage="https://www.linode.com",
    license="MIT",
    required_config=("default_linode_account",),
    optional_config=("linode_accounts_<account>_label", "linode_accounts_<account>_api_url"),
    capabilities=(
        Capability(name="compute", description="Linode compute instance management", category="infrastructure"),
        Capability(name="storage", description="Linode block storage and object storage management",
                   category="infrastructure"),
        Capability(name="networking", description="Linode networking services including VPCs, firewalls, and load balancers",
                   category="infrastructure"),
        Capability(name="dns", description="Linode DNS domain and record management", category="infrastructure"),
        Capability(name="kubernetes", description="Linode Kubernetes Engine (LKE) cluster management",
                   category="infrastructure", dependencies=("compute", "networking")),
        Capability(name="databases", description="Linode managed database services", category="infrastructure"),
        Capability(name="monitoring", description="Linode monitoring and alerting services", category="observability"),
        Capability(name="support", description="Linode support ticket management", category="support"),
        Capability(name="account", description="Multi-account support and account switching", category="management"),
    ),
)


def validate_linode_config(config: Config) -> None:
    """Require a default account that has a token.

    Raises:
        ConfigMissingKeysError: the default account or its token is absent
    """
    check_required_config(config, LINODE_METADATA.required_config)
    default = config.get_string("default_linode_account")
    token_key = f"linode_accounts_{default}_token"
    if not config.is_set(token_key):
        raise ConfigMissingKeysError([token_key], f"no token found for default account {default!r}")


class LinodeProvider(CloudProvider):
    """Linode provider.

    With a migration router, tools that have both implementations are
    registered as dispatchers and tracked by the router; without one, only
    the service-backed implementations are registered.

    Args:
        router: Optional migration router
        client_factory: Builds a client per account (tests inject mock transports)
        verify_on_init: Fetch the default account's profile during ``initialize``
    """

    metadata = LINODE_METADATA

    def __init__(self, router: MigrationRouter | None = None, *, client_factory: ClientFactory = LinodeClient,
                 cache_ttl: float = DEFAULT_CACHE_TTL, verify_on_init: bool = True,
                 log: BoundLogger | None = None) -> None:
        super().__init__(log)
        self.router = router
        self._client_factory = client_factory
        self._cache_ttl = cache_ttl
        self._verify = verify_on_init
        self._service: LinodeService | None = None

    @property
    def service(self) -> LinodeService | None:
        return self._service

    def validate_config(self, config: Config) -> None:
        validate_linode_config(config)

    async def _initialize(self, config: Config) -> None:
        accounts = AccountManager(parse_accounts(config), config.get_string("default_linode_account"))
        service = LinodeService(accounts, client_factory=self._client_factory, cache_ttl=self._cache_ttl)
        self._log.info("Initializing Linode service", accounts=len(accounts), default=accounts.current_name)
        if self._verify:
            try:
                profile = await service.verify()
            except BaseException:
                await service.aclose()
                raise
            self._log.info("Linode service initialized", account=accounts.current_name,
                           username=profile.get("username"))
        self._service = service

    def _require_service(self) -> LinodeService:
        if self._service is None:
            raise ProviderNotInitializedError(PROVIDER_NAME)
        return self._service

    def _tools(self) -> list[Tool]:
        service = self._require_service()
        tools: list[Tool] = [cls(service) for cls in SERVICE_TOOLS]
        if self.router is None:
            return tools
        native = {t.name: t for t in (cls(service) for cls in NATIVE_TOOLS)}
        for i, tool in enumerate(tools):
            if (alt := native.get(tool.name)) is None:
                continue
            if not self.router.is_tracked(tool.name):
                self.router.register_tool(tool.name, updated_by=PROVIDER_NAME)
            tools[i] = MigrationDispatchTool(tool, alt, self.router)
        return tools

    async def _health_check(self) -> None:
        await self._require_service().verify()

    async def _shutdown(self) -> None:
        if self._service is not None:
            await self._service.aclose()
            self._service = None


class LinodeProviderFactory:
    """``ProviderFactory`` for ``LinodeProvider``; keyword arguments pass through to each provider."""

    __slots__ = ("_kwargs",)

    def __init__(self, **provider_kwargs: object) -> None:
        self._kwargs = provider_kwargs

    def create_provider(self) -> LinodeProvider:
        return LinodeProvider(**self._kwargs)  # type: ignore[arg-type]

    def get_metadata(self) -> ProviderMetadata:
        return LINODE_METADATA

    def validate_config(self, config: Config) -> None:
        validate_linode_config(config)
