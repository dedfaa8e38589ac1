"""Tests for the Linode provider against an in-memory API served by ``httpx.MockTransport``."""

from __future__ import annotations

import httpx
import orjson
import pytest

from cloudmcp.foundation.context import ExecutionContext
from cloudmcp.foundation.errors import (
    ConfigMissingKeysError,
    ErrorCode,
    JsonDict,
    ProviderNotInitializedError,
    ToolException,
)
from cloudmcp.foundation.registry import ToolRegistry
from cloudmcp.migration import MigrationDispatchTool, MigrationRouter
from cloudmcp.providers import MappingConfig
from cloudmcp.providers.linode import (
    LINODE_METADATA,
    Account,
    AccountManager,
    LinodeAPIError,
    LinodeClient,
    LinodeProvider,
    LinodeProviderFactory,
    LinodeService,
    parse_accounts,
)
from cloudmcp.providers.linode.accounts import AccountConfigError, AccountNotFoundError
from cloudmcp.providers.linode.client import USER_AGENT, code_for_status
from cloudmcp.providers.linode.service import TTLCache
from cloudmcp.providers.linode.tools import (
    AccountInfoTool,
    AccountListTool,
    AccountSwitchTool,
    InstanceBootTool,
    InstanceDeleteTool,
    InstanceGetTool,
    InstancesListTool,
    NativeAccountInfoTool,
    NativeInstancesListTool,
    RegionsListTool,
    _PowerTool,
    format_instance,
    format_instances,
)

PROFILES = {
    "t1": {"username": "alice", "email": "alice@example.com", "uid": 1, "restricted": False},
    "t2": {"username": "bob", "email": "bob@example.com", "uid": 2, "restricted": True},
}

INSTANCE = {
    "id": 42, "label": "web-1", "status": "running", "region": "us-east", "type": "g6-standard-1",
    "ipv4": ["192.0.2.1"], "ipv6": "2600:3c00::1/128", "image": "linode/debian12",
    "specs": {"vcpus": 1, "memory": 2048, "disk": 51200, "transfer": 2000},
    "created": "2024-01-01T00:00:00", "updated": "2024-01-02T00:00:00",
    "backups": {"enabled": False}, "watchdog_enabled": True, "tags": ["web", "prod"],
}

REGION = {"id": "us-east", "label": "Newark, NJ", "country": "us", "status": "ok",
          "capabilities": ["Linodes"], "resolvers": {}}

POWER_STATES = {"boot": "booting", "reboot": "rebooting", "shutdown": "shutting_down"}


def json_response(status: int, body: object) -> httpx.Response:
    return httpx.Response(status, content=orjson.dumps(body), headers={"Content-Type": "application/json"})


def api_error(status: int, reason: str) -> httpx.Response:
    return json_response(status, {"errors": [{"reason": reason}]})


class FakeLinodeAPI:
    """Just enough of the Linode v4 API, one item per page to exercise pagination."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.instances: dict[int, JsonDict] = {
            42: dict(INSTANCE), 43: {**INSTANCE, "id": 43, "label": "db-1", "ipv4": []},
        }
        self.overrides: dict[str, httpx.Response | Exception] = {}

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == f"/v4{path}")

    def client_factory(self, account: Account) -> LinodeClient:
        return LinodeClient(account, transport=httpx.MockTransport(self))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v4")
        if (override := self.overrides.get(f"{request.method} {path}")) is not None:
            if isinstance(override, Exception):
                raise override
            return override

        token = request.headers["Authorization"].removeprefix("Bearer ")
        if token not in PROFILES:
            return api_error(401, "Invalid Token")

        parts = path.strip("/").split("/")
        match request.method, parts:
            case "GET", ["profile"]:
                return json_response(200, PROFILES[token])
            case "GET", ["account"]:
                return json_response(200, {"email": "billing@example.com", "company": "Acme", "balance": 0})
            case "GET", ["regions"]:
                return json_response(200, {"data": [REGION], "page": 1, "pages": 1})
            case "GET", ["linode", "instances"]:
                page = int(request.url.params.get("page", "1"))
                items = sorted(self.instances.values(), key=lambda i: i["id"])
                return json_response(200, {"data": items[page - 1:page], "page": page, "pages": len(items)})
            case "GET", ["linode", "instances", ident] if int(ident) in self.instances:
                return json_response(200, self.instances[int(ident)])
            case "POST", ["linode", "instances", ident, action] if int(ident) in self.instances:
                self.instances[int(ident)]["status"] = POWER_STATES[action]
                return json_response(200, {})
            case "DELETE", ["linode", "instances", ident] if int(ident) in self.instances:
                del self.instances[int(ident)]
                return json_response(200, {})
        return api_error(404, "Not found")


CONFIG = MappingConfig({
    "default_linode_account": "primary",
    "linode_accounts_primary_token": "t1",
    "linode_accounts_primary_label": "Production",
    "linode_accounts_staging_token": "t2",
    "linode_accounts_staging_label": "Staging",
    "linode_accounts_broken_token": "revoked",
})


@pytest.fixture
def api() -> FakeLinodeAPI:
    return FakeLinodeAPI()


@pytest.fixture
def service(api: FakeLinodeAPI) -> LinodeService:
    return LinodeService(AccountManager.from_config(CONFIG), client_factory=api.client_factory)


def ctx_for(name: str) -> ExecutionContext:
    return ExecutionContext.create(name)


# ═════════════════════════════════════════════════════════════════════════════
# Accounts
# ═════════════════════════════════════════════════════════════════════════════


def test_parse_accounts() -> None:
    accounts = {a.name: a for a in parse_accounts(CONFIG)}

    assert sorted(accounts) == ["broken", "primary", "staging"]
    assert accounts["primary"].label == "Production"
    assert accounts["primary"].token.get_secret_value() == "t1"
    assert accounts["primary"].api_url == "https://api.linode.com/v4"
    assert accounts["broken"].display_label == "broken"
    assert "t1" not in repr(accounts["primary"])


def test_parse_accounts_custom_api_url() -> None:
    cfg = MappingConfig({"linode_accounts_lab_token": "x", "linode_accounts_lab_api_url": "http://localhost:8080/v4"})
    assert parse_accounts(cfg)[0].api_url == "http://localhost:8080/v4"


def test_parse_accounts_requires_token() -> None:
    with pytest.raises(AccountConfigError, match="no token"):
        parse_accounts(MappingConfig({"linode_accounts_orphan_label": "Orphan"}))


def test_account_manager_switch_and_list() -> None:
    manager = AccountManager.from_config(CONFIG)
    assert manager.current_name == "primary"
    assert len(manager) == 3

    assert manager.switch("staging").label == "Staging"
    assert manager.current().name == "staging"
    assert manager.list() == {"broken": "", "primary": "Production", "staging": "Staging"}

    with pytest.raises(AccountNotFoundError):
        manager.switch("nope")
    assert manager.current_name == "staging"


def test_account_manager_unknown_default() -> None:
    with pytest.raises(AccountNotFoundError):
        AccountManager(parse_accounts(CONFIG), "nope")


# ═════════════════════════════════════════════════════════════════════════════
# Client
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_client_sends_auth_and_user_agent(api: FakeLinodeAPI) -> None:
    async with api.client_factory(parse_accounts(CONFIG)[1]) as client:
        assert (await client.get_profile())["username"] == "alice"

    request = api.requests[0]
    assert request.headers["Authorization"] == "Bearer t1"
    assert request.headers["User-Agent"] == USER_AGENT == "CloudMCP/0.1.0"
    assert str(request.url) == "https://api.linode.com/v4/profile"


@pytest.mark.asyncio
async def test_client_follows_pagination(api: FakeLinodeAPI) -> None:
    async with api.client_factory(parse_accounts(CONFIG)[1]) as client:
        instances = await client.list_instances()

    assert [i["id"] for i in instances] == [42, 43]
    assert api.count("GET", "/linode/instances") == 2
    assert api.requests[0].url.params["page_size"] == "100"


@pytest.mark.asyncio
async def test_client_maps_http_errors(api: FakeLinodeAPI) -> None:
    async with api.client_factory(parse_accounts(CONFIG)[1]) as client:
        with pytest.raises(LinodeAPIError) as exc_info:
            await client.get_instance(999)

    err = exc_info.value
    assert err.status == 404
    assert err.code is ErrorCode.NON_RETRYABLE
    assert not err.retryable
    assert str(err) == "linode api error 404 on GET /linode/instances/999: Not found"


@pytest.mark.asyncio
@pytest.mark.parametrize("status,retryable", [(400, False), (401, False), (403, False), (429, True), (500, True),
                                              (503, True)])
async def test_client_status_classification(api: FakeLinodeAPI, status: int, retryable: bool) -> None:
    api.overrides["GET /profile"] = httpx.Response(status)
    async with api.client_factory(parse_accounts(CONFIG)[1]) as client:
        with pytest.raises(LinodeAPIError) as exc_info:
            await client.get_profile()

    assert exc_info.value.retryable is retryable
    assert code_for_status(status) is exc_info.value.code


@pytest.mark.asyncio
async def test_client_maps_transport_failures(api: FakeLinodeAPI) -> None:
    account = parse_accounts(CONFIG)[1]
    api.overrides["GET /profile"] = httpx.ConnectError("connection refused")
    api.overrides["GET /account"] = httpx.ReadTimeout("read timed out")

    async with api.client_factory(account) as client:
        with pytest.raises(LinodeAPIError) as refused:
            await client.get_profile()
        with pytest.raises(LinodeAPIError) as timeout:
            await client.get_account()

    assert refused.value.code is ErrorCode.RETRYABLE_TRANSPORT and refused.value.status == 0
    assert str(timeout.value) == "linode api timeout: GET /account"


# ═════════════════════════════════════════════════════════════════════════════
# Service
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_ttl_cache_shares_and_expires() -> None:
    now = [0.0]
    cache = TTLCache(10, clock=lambda: now[0])
    fetches = 0

    async def fetch() -> list[JsonDict]:
        nonlocal fetches
        fetches += 1
        return [{"n": fetches}]

    assert await cache.get(fetch) == [{"n": 1}]
    assert await cache.get(fetch) == [{"n": 1}]
    now[0] = 10.0
    assert await cache.get(fetch) == [{"n": 2}]
    cache.invalidate()
    assert await cache.get(fetch) == [{"n": 3}]


@pytest.mark.asyncio
async def test_regions_are_cached(api: FakeLinodeAPI, service: LinodeService) -> None:
    await service.list_regions()
    await service.list_regions()
    assert api.count("GET", "/regions") == 1


@pytest.mark.asyncio
async def test_switch_account_uses_new_token(api: FakeLinodeAPI, service: LinodeService) -> None:
    account, profile = await service.switch_account("staging")

    assert account.name == "staging"
    assert profile["username"] == "bob"
    assert (await service.get_profile())["username"] == "bob"
    assert api.requests[-1].headers["Authorization"] == "Bearer t2"


@pytest.mark.asyncio
async def test_switch_account_reverts_on_failed_verification(service: LinodeService) -> None:
    with pytest.raises(LinodeAPIError):
        await service.switch_account("broken")
    assert service.accounts.current_name == "primary"


@pytest.mark.asyncio
async def test_power_operations_return_refreshed_instance(service: LinodeService) -> None:
    assert (await service.boot_instance(42))["status"] == "booting"
    assert (await service.shutdown_instance(42))["status"] == "shutting_down"
    deleted = await service.delete_instance(43)
    assert deleted["label"] == "db-1"
    with pytest.raises(LinodeAPIError):
        await service.get_instance(43)


# ═════════════════════════════════════════════════════════════════════════════
# Tools
# ═════════════════════════════════════════════════════════════════════════════


def test_format_instances() -> None:
    assert format_instances([]) == "No Linode instances found."
    text = format_instances([INSTANCE])
    assert text.startswith("Found 1 Linode instance(s):")
    assert "ID: 42 | web-1" in text
    assert "IPv4: 192.0.2.1" in text


def test_format_instance() -> None:
    text = format_instance(INSTANCE)
    assert "- Disk: 50 GB" in text
    assert "Backups: Disabled" in text
    assert "Watchdog: Enabled" in text
    assert text.endswith("Tags: web, prod")


@pytest.mark.asyncio
async def test_account_info_tool(service: LinodeService) -> None:
    text = await AccountInfoTool(service).execute({}, ctx_for("linode_account_info"))
    assert text == ("Account: primary (Production)\nUsername: alice\nEmail: alice@example.com\n"
                    "UID: 1\nRestricted: false")


@pytest.mark.asyncio
async def test_instance_tools(service: LinodeService) -> None:
    listing = await InstancesListTool(service).execute({}, ctx_for("linode_instances_list"))
    details = await InstanceGetTool(service).execute({"instance_id": 42}, ctx_for("linode_instance_get"))
    booted = await InstanceBootTool(service).execute({"instance_id": 42}, ctx_for("linode_instance_boot"))
    deleted = await InstanceDeleteTool(service).execute({"instance_id": 43}, ctx_for("linode_instance_delete"))

    assert listing.startswith("Found 2 Linode instance(s):")
    assert "Label: web-1" in details
    assert booted.startswith("Instance boot initiated successfully!")
    assert "Status: booting" in booted
    assert "- Label: db-1" in deleted


@pytest.mark.asyncio
async def test_instance_tool_validation() -> None:
    with pytest.raises(ToolException) as exc_info:
        InstanceGetTool(None).validate({"instance_id": 0})  # type: ignore[arg-type]
    assert exc_info.value.code is ErrorCode.PARAM_VALIDATION


@pytest.mark.asyncio
async def test_tool_maps_api_errors(service: LinodeService) -> None:
    with pytest.raises(ToolException) as exc_info:
        await InstanceGetTool(service).execute({"instance_id": 999}, ctx_for("linode_instance_get"))

    err = exc_info.value.error
    assert err.code is ErrorCode.NON_RETRYABLE
    assert err.message == "failed to get instance 999: linode api error 404 on GET /linode/instances/999: Not found"


@pytest.mark.asyncio
async def test_regions_tool(service: LinodeService) -> None:
    result = await RegionsListTool(service).execute({}, ctx_for("linode_regions_list"))
    assert result["count"] == 1
    assert result["regions"][0] == {k: REGION[k] for k in ("id", "label", "country", "status", "capabilities")}


@pytest.mark.asyncio
async def test_account_list_and_switch_tools(service: LinodeService) -> None:
    switched = await AccountSwitchTool(service).execute({"account_name": "staging"}, ctx_for("cloudmcp_account_switch"))
    listing = await AccountListTool(service).execute({}, ctx_for("cloudmcp_account_list"))

    assert switched == "Successfully switched to account: staging (Staging)\nUsername: bob"
    assert listing.splitlines()[0] == "Current account: staging"
    assert "* staging: Staging (current)" in listing
    assert "  primary: Production" in listing


@pytest.mark.asyncio
async def test_switch_to_unknown_account(service: LinodeService) -> None:
    with pytest.raises(ToolException) as exc_info:
        await AccountSwitchTool(service).execute({"account_name": "nope"}, ctx_for("cloudmcp_account_switch"))

    assert exc_info.value.code is ErrorCode.INVALID_ARGUMENT
    assert exc_info.value.error.message == "Failed to switch account: account 'nope' not found"


@pytest.mark.asyncio
async def test_native_tools_answer_with_json(service: LinodeService) -> None:
    info = await NativeAccountInfoTool(service).execute({}, ctx_for("linode_account_info"))
    listing = await NativeInstancesListTool(service).execute({}, ctx_for("linode_instances_list"))

    assert info["email"] == "billing@example.com"
    assert info["company"] == "Acme"
    assert listing["count"] == 2
    assert listing["instances"][0]["label"] == "web-1"


# ═════════════════════════════════════════════════════════════════════════════
# Provider
# ═════════════════════════════════════════════════════════════════════════════


def test_validate_config() -> None:
    factory = LinodeProviderFactory()

    with pytest.raises(ConfigMissingKeysError) as missing_default:
        factory.validate_config(MappingConfig())
    with pytest.raises(ConfigMissingKeysError) as missing_token:
        factory.validate_config(MappingConfig({"default_linode_account": "ghost"}))

    assert missing_default.value.keys == ["default_linode_account"]
    assert missing_token.value.keys == ["linode_accounts_ghost_token"]
    assert "no token found for default account 'ghost'" in str(missing_token.value)
    factory.validate_config(CONFIG)


def test_metadata() -> None:
    factory = LinodeProviderFactory()
    assert factory.get_metadata() is LINODE_METADATA
    capabilities = {c.name: c for c in LINODE_METADATA.capabilities}
    assert len(capabilities) == 9
    assert capabilities["kubernetes"].dependencies == ("compute", "networking")


@pytest.mark.asyncio
async def test_provider_lifecycle_without_router(api: FakeLinodeAPI) -> None:
    provider = LinodeProviderFactory(client_factory=api.client_factory).create_provider()
    registry = ToolRegistry()

    await provider.initialize(CONFIG)
    assert api.count("GET", "/profile") == 1
    assert provider.register_tools(registry) == 10
    assert not any(isinstance(t, MigrationDispatchTool) for t in registry)

    await provider.health_check()
    await provider.shutdown()
    assert provider.service is None


@pytest.mark.asyncio
async def test_provider_wraps_dual_tools_with_router(api: FakeLinodeAPI) -> None:
    router = MigrationRouter()
    provider = LinodeProvider(router, client_factory=api.client_factory)
    registry = ToolRegistry()
    await provider.initialize(CONFIG)
    provider.register_tools(registry)

    dispatched = sorted(t.name for t in registry if isinstance(t, MigrationDispatchTool))
    assert dispatched == ["linode_account_info", "linode_instances_list"]
    assert router.tool_names() == dispatched

    router.force_provider_native("linode_instances_list", "test")
    result = await registry.require("linode_instances_list").execute({}, ctx_for("linode_instances_list"))
    assert result["count"] == 2
    await provider.shutdown()


@pytest.mark.asyncio
async def test_provider_hooks_require_a_live_service(api: FakeLinodeAPI) -> None:
    provider = LinodeProvider(client_factory=api.client_factory)

    with pytest.raises(ProviderNotInitializedError, match="linode"):
        provider._tools()
    with pytest.raises(ProviderNotInitializedError):
        await provider._health_check()


def test_power_tool_base_is_abstract(service: LinodeService) -> None:
    with pytest.raises(TypeError, match="_call"):
        _PowerTool(service)  # type: ignore[abstract]
    assert InstanceBootTool(service).name == "linode_instance_boot"


@pytest.mark.asyncio
async def test_provider_initialize_fails_on_bad_token(api: FakeLinodeAPI) -> None:
    provider = LinodeProvider(client_factory=api.client_factory)
    config = CONFIG.with_values(default_linode_account="broken")

    with pytest.raises(LinodeAPIError) as exc_info:
        await provider.initialize(config)

    assert exc_info.value.status == 401
    assert not provider.is_initialized()


@pytest.mark.asyncio
async def test_provider_skips_verification_when_disabled(api: FakeLinodeAPI) -> None:
    provider = LinodeProvider(client_factory=api.client_factory, verify_on_init=False)
    await provider.initialize(CONFIG.with_values(default_linode_account="broken"))

    assert provider.is_initialized()
    assert api.requests == []
    await provider.shutdown()
