"""Server configuration."""

from .settings import ServerSettings, clear_settings_cache, get_settings

__all__ = ["ServerSettings", "get_settings", "clear_settings_cache"]
