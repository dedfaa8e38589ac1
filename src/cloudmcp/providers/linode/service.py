"""Account-scoped Linode service layer.

``LinodeService`` owns one client per account and resolves the current
account on every call, so an account switch applies to the next call. Static
data (regions) is cached with a TTL.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from cloudmcp.foundation.errors import JsonDict
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

from .accounts import Account, AccountManager
from .client import LinodeClient

DEFAULT_CACHE_TTL = 30 * 60.0

ClientFactory = Callable[[Account], LinodeClient]


class TTLCache:
    """Single-value async cache: concurrent misses share one fetch."""

    __slots__ = ("ttl", "_clock", "_value", "_expiry", "_lock")

    def __init__(self, ttl: float = DEFAULT_CACHE_TTL, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._value: list[JsonDict] | None = None
        self._expiry = 0.0
        self._lock = asyncio.Lock()

    def _fresh(self) -> bool:
        return self._value is not None and self._clock() < self._expiry

    async def get(self, fetch: Callable[[], Awaitable[list[JsonDict]]]) -> list[JsonDict]:
        if self._fresh():
            return list(self._value)  # type: ignore[arg-type]
        async with self._lock:
            if not self._fresh():
                self._value = list(await fetch())
                self._expiry = self._clock() + self.ttl
            return list(self._value)  # type: ignore[arg-type]

    def invalidate(self) -> None:
        self._value = None
        self._expiry = 0.0


class LinodeService:
    """Operations on the current account."""

    def __init__(self, accounts: AccountManager, *, client_factory: ClientFactory = LinodeClient,
                 cache_ttl: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.monotonic,
                 log: BoundLogger | None = None) -> None:
        self.accounts = accounts
        self._client_factory = client_factory
        self._clients: dict[str, LinodeClient] = {}
        self._regions: dict[str, TTLCache] = {}
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._log = log or get_logger("cloudmcp.linode.service")

    def client(self, account: Account | None = None) -> LinodeClient:
        """Client for ``account``, the current account by default."""
        account = account or self.accounts.current()
        if (client := self._clients.get(account.name)) is None:
            client = self._clients[account.name] = self._client_factory(account)
        return client

    async def verify(self) -> JsonDict:
        """Fetch the current account's profile to prove the token works."""
        return await self.client().get_profile()

    async def get_profile(self) -> JsonDict:
        return await self.client().get_profile()

    async def list_instances(self) -> list[JsonDict]:
        return await self.client().list_instances()

    async def get_instance(self, instance_id: int) -> JsonDict:
        return await self.client().get_instance(instance_id)

    async def boot_instance(self, instance_id: int, config_id: int | None = None) -> JsonDict:
        client = self.client()
        await client.boot_instance(instance_id, config_id)
        return await client.get_instance(instance_id)

    async def reboot_instance(self, instance_id: int, config_id: int | None = None) -> JsonDict:
        client = self.client()
        await client.reboot_instance(instance_id, config_id)
        return await client.get_instance(instance_id)

    async def shutdown_instance(self, instance_id: int) -> JsonDict:
        client = self.client()
        await client.shutdown_instance(instance_id)
        return await client.get_instance(instance_id)

    async def delete_instance(self, instance_id: int) -> JsonDict:
        """Delete and return the instance as it was before deletion."""
        client = self.client()
        instance = await client.get_instance(instance_id)
        await client.delete_instance(instance_id)
        self._log.info("Deleted Linode instance", instance_id=instance_id, label=instance.get("label"),
                       account=client.account.name)
        return instance

    async def list_regions(self) -> list[JsonDict]:
        client = self.client()
        api_url = client.account.api_url
        if (cache := self._regions.get(api_url)) is None:
            cache = self._regions[api_url] = TTLCache(self._cache_ttl, clock=self._clock)
        return await cache.get(client.list_regions)

    async def switch_account(self, name: str) -> tuple[Account, JsonDict]:
        """Switch, then verify the new account; the switch is undone if verification fails."""
        previous = self.accounts.current_name
        account = self.accounts.switch(name)
        try:
            profile = await self.client(account).get_profile()
        except BaseException:
            self.accounts.switch(previous)
            raise
        self._log.info("Switched Linode account", to=name, username=profile.get("username"))
        return account, profile

    async def aclose(self) -> None:
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.aclose()
