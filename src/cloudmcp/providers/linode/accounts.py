"""Multi-account support for the Linode provider.

Accounts are configured as ``linode_accounts_<name>_token`` (required),
``linode_accounts_<name>_label`` and ``linode_accounts_<name>_api_url``. One
account is current at a time; tools act on the current account.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, SecretStr

from cloudmcp.foundation.errors import CloudMCPError, ErrorCode
from cloudmcp.providers.config import Config

DEFAULT_API_URL = "https://api.linode.com/v4"
_FIELDS = ("token", "label", "api_url")


class AccountNotFoundError(CloudMCPError):
    code = ErrorCode.INVALID_ARGUMENT

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"account {name!r} not found")


class AccountConfigError(CloudMCPError):
    code = ErrorCode.CONFIG_MISSING_KEYS


class Account(BaseModel):
    """A configured Linode account. The token never appears in reprs or dumps."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str = ""
    token: SecretStr
    api_url: str = DEFAULT_API_URL

    @property
    def display_label(self) -> str:
        return self.label or self.name


def parse_accounts(config: Config) -> list[Account]:
    """Read every ``linode_accounts_*`` entry into accounts, sorted by name.

    Raises:
        AccountConfigError: an account has no token
    """
    raw: dict[str, dict[str, str]] = {}
    for key, value in config.get_string_map("linode_accounts").items():
        for fld in _FIELDS:
            if key.endswith(f"_{fld}") and (name := key[: -len(fld) - 1]):
                raw.setdefault(name, {})[fld] = value
                break
    accounts = []
    for name, fields in sorted(raw.items()):
        if not fields.get("token"):
            raise AccountConfigError(f"account {name!r}: account has no token configured")
        accounts.append(Account(
            name=name, label=fields.get("label", ""), token=SecretStr(fields["token"]),
            api_url=fields.get("api_url") or DEFAULT_API_URL,
        ))
    return accounts


class AccountManager:
    """Thread-safe set of accounts with one current account."""

    __slots__ = ("_accounts", "_current", "_lock")

    def __init__(self, accounts: Iterable[Account], current: str) -> None:
        self._accounts = {a.name: a for a in accounts}
        self._lock = threading.Lock()
        if current not in self._accounts:
            raise AccountNotFoundError(current)
        self._current = current

    @classmethod
    def from_config(cls, config: Config) -> AccountManager:
        return cls(parse_accounts(config), config.get_string("default_linode_account"))

    @property
    def current_name(self) -> str:
        with self._lock:
            return self._current

    def current(self) -> Account:
        with self._lock:
            return self._accounts[self._current]

    def get(self, name: str) -> Account:
        with self._lock:
            if (account := self._accounts.get(name)) is None:
                raise AccountNotFoundError(name)
            return account

    def switch(self, name: str) -> Account:
        """Make ``name`` current and return it."""
        with self._lock:
            if (account := self._accounts.get(name)) is None:
                raise AccountNotFoundError(name)
            self._current = name
            return account

    def list(self) -> dict[str, str]:
        """``name -> label`` for every account."""
        with self._lock:
            return {name: a.label for name, a in sorted(self._accounts.items())}

    def __len__(self) -> int:
        return len(self._accounts)
