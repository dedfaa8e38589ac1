"""Factory registry for cloud providers.

Providers are registered by name as factories, so the server can build only
the providers a deployment enables. A process-wide default registry backs the
module-level helpers.
"""

from __future__ import annotations

import threading

from cloudmcp.foundation.errors import (
    DuplicateRegistrationError,
    ProviderNotRegisteredError,
    ProviderRegistrationError,
)

from .base import CloudProvider, ProviderFactory, ProviderMetadata
from .config import Config


class ProviderRegistry:
    """Thread-safe ``name -> ProviderFactory`` mapping."""

    __slots__ = ("_factories", "_lock")

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._lock = threading.RLock()

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Register a factory.

        Raises:
            ProviderRegistrationError: empty name or missing factory
            DuplicateRegistrationError: name already registered
        """
        if not name:
            raise ProviderRegistrationError("provider name cannot be empty")
        if factory is None:
            raise ProviderRegistrationError("provider factory cannot be nil")
        with self._lock:
            if name in self._factories:
                raise DuplicateRegistrationError("provider", name)
            self._factories[name] = factory

    def _factory(self, name: str) -> ProviderFactory:
        with self._lock:
            if (factory := self._factories.get(name)) is None:
                raise ProviderNotRegisteredError(name)
            return factory

    def get(self, name: str) -> CloudProvider:
        """Create a fresh, uninitialized provider."""
        if (provider := self._factory(name).create_provider()) is None:
            raise ProviderRegistrationError(f"factory returned nil provider: {name!r}")
        return provider

    def get_metadata(self, name: str) -> ProviderMetadata:
        return self._factory(name).get_metadata()

    def get_all_metadata(self) -> dict[str, ProviderMetadata]:
        with self._lock:
            factories = dict(self._factories)
        return {name: f.get_metadata() for name, f in sorted(factories.items())}

    def validate_provider(self, name: str, config: Config) -> None:
        """Validate ``config`` with the named factory, without creating a provider."""
        self._factory(name).validate_config(config)

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._factories

    def count(self) -> int:
        with self._lock:
            return len(self._factories)

    def reset(self) -> None:
        """Drop every factory; for tests."""
        with self._lock:
            self._factories.clear()

    def __contains__(self, name: str) -> bool:
        return self.is_registered(name)

    def __len__(self) -> int:
        return self.count()


_default = ProviderRegistry()


def get_default_registry() -> ProviderRegistry:
    return _default


def register_provider(name: str, factory: ProviderFactory) -> None:
    _default.register(name, factory)


def get_provider(name: str) -> CloudProvider:
    return _default.get(name)


def list_providers() -> list[str]:
    return _default.list()
