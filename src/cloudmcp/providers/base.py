"""Provider lifecycle contracts.

A provider is a cloud back-end that contributes tools. Its lifecycle is
strict: created uninitialized by a factory, then ``initialize`` (which
validates config first), ``register_tools``, any number of
``health_check`` calls, and finally ``shutdown``.

``CloudProvider`` enforces the lifecycle rules once so concrete providers only
implement the hooks (``_initialize``, ``_tools``, ``_health_check``,
``_shutdown``).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from cloudmcp.foundation.core import Tool
from cloudmcp.foundation.errors import (
    ConfigMissingKeysError,
    ProviderAlreadyInitializedError,
    ProviderNotInitializedError,
)
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

from .config import Config


class Capability(BaseModel):
    """A feature set a provider declares for discovery."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    version: str = "1.0.0"
    category: str
    dependencies: tuple[str, ...] = ()
    experimental: bool = False


class ProviderMetadata(BaseModel):
    """Static description of a provider, fixed at factory registration."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    version: str
    description: str
    author: str
    homepage: str = ""
    license: str = ""
    required_config: tuple[str, ...] = ()
    optional_config: tuple[str, ...] = ()
    capabilities: tuple[Capability, ...] = Field(default=())


@runtime_checkable
class ToolSink(Protocol):
    """Where providers publish their tools (a ``ToolRegistry`` in practice)."""

    def register(self, tool: Tool) -> None: ...


def check_required_config(config: Config, required: Sequence[str]) -> None:
    """Raise ConfigMissingKeysError for every required key that is not set."""
    if missing := [k for k in required if not config.is_set(k)]:
        raise ConfigMissingKeysError(missing)


class CloudProvider(ABC):
    """Base class for providers, enforcing the lifecycle.

    Subclasses set ``metadata`` and implement the hooks. ``initialize`` raises
    ``ProviderAlreadyInitializedError`` on a second call; ``register_tools``
    and ``health_check`` raise ``ProviderNotInitializedError`` before it;
    ``shutdown`` is a no-op when never initialized and idempotent.
    """

    metadata: ProviderMetadata

    def __init__(self, log: BoundLogger | None = None) -> None:
        self._initialized = False
        self._lifecycle = asyncio.Lock()
        self._log = log or get_logger("cloudmcp.providers", provider=self.name)

    @property
    def name(self) -> str:
        return self.metadata.name

    def is_initialized(self) -> bool:
        return self._initialized

    def get_capabilities(self) -> list[Capability]:
        return list(self.metadata.capabilities)

    def validate_config(self, config: Config) -> None:
        """Check required keys; subclasses extend with provider-specific rules."""
        check_required_config(config, self.metadata.required_config)

    async def initialize(self, config: Config) -> None:
        async with self._lifecycle:
            if self._initialized:
                raise ProviderAlreadyInitializedError(self.name)
            self.validate_config(config)
            await self._initialize(config)
            self._initialized = True
        self._log.info("provider initialized")

    def register_tools(self, sink: ToolSink) -> int:
        """Publish this provider's tools. Returns the number registered."""
        if not self._initialized:
            raise ProviderNotInitializedError(self.name)
        tools = self._tools()
        for tool in tools:
            sink.register(tool)
        self._log.info("provider tools registered", tools=len(tools))
        return len(tools)

    async def health_check(self) -> None:
        if not self._initialized:
            raise ProviderNotInitializedError(self.name)
        await self._health_check()

    async def shutdown(self) -> None:
        async with self._lifecycle:
            if not self._initialized:
                return
            try:
                await self._shutdown()
            finally:
                self._initialized = False
        self._log.info("provider shut down")

    # ─────────────────────────────────────────────────────────────────
    # Hooks
    # ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def _initialize(self, config: Config) -> None: ...

    @abstractmethod
    def _tools(self) -> list[Tool]: ...

    async def _health_check(self) -> None:
        return None

    async def _shutdown(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, initialized={self._initialized})"


@runtime_checkable
class ProviderFactory(Protocol):
    """Creates uninitialized providers and describes them."""

    def create_provider(self) -> CloudProvider | None: ...
    def get_metadata(self) -> ProviderMetadata: ...
    def validate_config(self, config: Config) -> None: ...
