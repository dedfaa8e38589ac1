"""Linode provider: accounts, API client, service layer and tools."""

from .accounts import Account, AccountConfigError, AccountManager, AccountNotFoundError, parse_accounts
from .client import LinodeAPIError, LinodeClient
from .provider import LINODE_METADATA, PROVIDER_NAME, LinodeProvider, LinodeProviderFactory, validate_linode_config
from .service import LinodeService, TTLCache

__all__ = [
    "Account", "AccountManager", "AccountNotFoundError", "AccountConfigError", "parse_accounts",
    "LinodeClient", "LinodeAPIError",
    "LinodeService", "TTLCache",
    "LinodeProvider", "LinodeProviderFactory", "LINODE_METADATA", "PROVIDER_NAME", "validate_linode_config",
]
