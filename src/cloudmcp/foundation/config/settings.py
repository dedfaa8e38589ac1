"""Environment-based server configuration using pydantic-settings.

The well-known variables (``LOG_LEVEL``, ``ENABLE_METRICS``, ``METRICS_PORT``,
``CLOUD_MCP_SERVER_NAME``) are read under their bare names; everything else
uses the ``CLOUD_MCP_`` prefix. Provider credentials are not settings: they are
read by ``MappingConfig.from_env`` with the provider config prefix.

Example:
    >>> from cloudmcp.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.metrics_port
    8080

    # Or with environment variables:
    # LOG_LEVEL=DEBUG
    # CLOUD_MCP_ENVIRONMENT=production
    # CLOUD_MCP_PROVIDERS=linode
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import AliasChoices, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Root settings for the CloudMCP server.

    Example environment variables:
        CLOUD_MCP_SERVER_NAME=CloudMCP
        LOG_LEVEL=DEBUG
        LOG_FORMAT=json
        ENABLE_METRICS=true
        METRICS_PORT=9090
        CLOUD_MCP_ENVIRONMENT=production
        CLOUD_MCP_PROVIDERS=linode
    """

    model_config = SettingsConfigDict(
        env_prefix="CLOUD_MCP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
        populate_by_name=True,
    )

    server_name: str = Field(
        default="CloudMCP",
        min_length=1,
        validation_alias=AliasChoices("CLOUD_MCP_SERVER_NAME", "SERVER_NAME", "server_name"),
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "CLOUD_MCP_LOG_LEVEL", "log_level"),
    )
    log_format: Literal["console", "json", "none"] = Field(
        default="console", validation_alias=AliasChoices("LOG_FORMAT", "CLOUD_MCP_LOG_FORMAT", "log_format"),
    )
    enable_metrics: bool = Field(
        default=False,
        validation_alias=AliasChoices("ENABLE_METRICS", "CLOUD_MCP_ENABLE_METRICS", "enable_metrics"),
    )
    metrics_port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=8080, validation_alias=AliasChoices("METRICS_PORT", "CLOUD_MCP_METRICS_PORT", "metrics_port"),
    )
    environment: Literal["default", "development", "production"] = "default"
    providers: str = Field(
        default="",
        description="Comma separated provider names to enable. Empty serves only the built-in tools; "
                    "set CLOUD_MCP_PROVIDERS=linode for the bundled Linode provider",
    )
    provider_config_prefix: str = Field(default="CLOUD_MCP_", description="Env prefix for provider config keys")
    enable_migration: bool = Field(default=True, description="Route dual-implementation tools through the migration router")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    @field_validator("environment", "log_format", mode="before")
    @classmethod
    def _normalize_lower(cls, v: str) -> str:
        return v.lower() if isinstance(v, str) else v

    @computed_field
    @property
    def provider_names(self) -> list[str]:
        """Enabled providers, in declaration order, without duplicates."""
        seen: dict[str, None] = {}
        for part in self.providers.split(","):
            if name := part.strip().lower():
                seen.setdefault(name, None)
        return list(seen)

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> ServerSettings:
    """Global settings instance (cached)."""
    return ServerSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    After calling this, the next get_settings() call will reload
    configuration from the environment.
    """
    get_settings.cache_clear()
