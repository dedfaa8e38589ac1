"""Typed configuration accessor handed to providers.

Providers never read the environment themselves. They receive a ``Config``
with typed getters; ``MappingConfig`` backs it with a plain mapping and can be
built from the environment, stripping a prefix and lowercasing keys.

Example:
    >>> cfg = MappingConfig.from_env({"CLOUD_MCP_DEFAULT_LINODE_ACCOUNT": "primary"}, prefix="CLOUD_MCP_")
    >>> cfg.get_string("default_linode_account")
    'primary'
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

from cloudmcp.foundation.errors import ConfigMissingKeysError

_TRUE = frozenset({"1", "true", "yes", "on", "y", "t"})


@runtime_checkable
class Config(Protocol):
    """Read-only typed configuration."""

    def get_string(self, key: str) -> str: ...
    def get_bool(self, key: str) -> bool: ...
    def get_int(self, key: str) -> int: ...
    def get_string_map(self, key: str) -> dict[str, str]: ...
    def is_set(self, key: str) -> bool: ...
    def validate(self) -> None: ...


class MappingConfig:
    """Mapping-backed ``Config``. Missing keys read as "", False, 0 and {}."""

    __slots__ = ("_values", "_required")

    def __init__(self, values: Mapping[str, object] | None = None, *, required: Iterable[str] = ()) -> None:
        self._values: dict[str, object] = {k.lower(): v for k, v in (values or {}).items()}
        self._required = tuple(required)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, prefix: str = "CLOUD_MCP_", **kw: object) -> MappingConfig:
        """Every ``<prefix>KEY`` variable as ``key``."""
        env = os.environ if environ is None else environ
        plen = len(prefix)
        return cls({k[plen:].lower(): v for k, v in env.items() if k.upper().startswith(prefix.upper())}, **kw)  # type: ignore[arg-type]

    def get_string(self, key: str) -> str:
        v = self._values.get(key.lower())
        return "" if v is None else str(v)

    def get_bool(self, key: str) -> bool:
        match v := self._values.get(key.lower()):
            case bool():
                return v
            case None:
                return False
        return str(v).strip().lower() in _TRUE

    def get_int(self, key: str) -> int:
        match v := self._values.get(key.lower()):
            case bool():
                return int(v)
            case int():
                return v
            case None:
                return 0
        try:
            return int(str(v).strip())
        except ValueError:
            return 0

    def get_string_map(self, key: str) -> dict[str, str]:
        """A mapping value, or every ``<key>_<suffix>`` entry keyed by suffix."""
        key = key.lower()
        if isinstance(v := self._values.get(key), Mapping):
            return {str(k): str(val) for k, val in v.items()}
        prefix = f"{key}_"
        return {k[len(prefix):]: str(v) for k, v in self._values.items() if k.startswith(prefix)}

    def is_set(self, key: str) -> bool:
        v = self._values.get(key.lower())
        return v is not None and v != ""

    def missing(self, keys: Iterable[str]) -> list[str]:
        return [k for k in keys if not self.is_set(k)]

    def require(self, keys: Iterable[str]) -> None:
        """Raise ConfigMissingKeysError listing every absent key."""
        if missing := self.missing(keys):
            raise ConfigMissingKeysError(missing)

    def validate(self) -> None:
        self.require(self._required)

    def with_values(self, **values: object) -> MappingConfig:
        return MappingConfig({**self._values, **values}, required=self._required)

    def keys(self) -> list[str]:
        return sorted(self._values)

    def __repr__(self) -> str:
        return f"MappingConfig(keys={self.keys()})"
