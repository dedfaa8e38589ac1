"""Cloud provider framework: config accessor, lifecycle base class and factory registry."""

from .base import Capability, CloudProvider, ProviderFactory, ProviderMetadata, ToolSink, check_required_config
from .config import Config, MappingConfig
from .registry import (
    ProviderRegistry,
    get_default_registry,
    get_provider,
    list_providers,
    register_provider,
)

__all__ = [
    "Config", "MappingConfig",
    "Capability", "ProviderMetadata", "CloudProvider", "ProviderFactory", "ToolSink", "check_required_config",
    "ProviderRegistry", "get_default_registry", "register_provider", "get_provider", "list_providers",
]
