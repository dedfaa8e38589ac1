"""Linode MCP tools.

Service-backed tools go through ``LinodeService`` and answer with readable
text. ``linode_account_info`` and ``linode_instances_list`` also have a
provider-native implementation that talks to the client directly and answers
with JSON; the provider pairs them behind a migration dispatcher.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Annotated

from pydantic import BaseModel, ConfigDict, Field

from cloudmcp.foundation.core import BaseTool, EmptyParams, ToolMetadata
from cloudmcp.foundation.errors import JsonDict, ToolException

from .accounts import AccountNotFoundError
from .client import LinodeAPIError

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext

    from .service import LinodeService

MB_PER_GB = 1024


# ─────────────────────────────────────────────────────────────────────────────
# Parameters and summaries
# ─────────────────────────────────────────────────────────────────────────────


class InstanceParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    instance_id: Annotated[int, Field(gt=0, description="ID of the Linode instance")]


class PowerParams(InstanceParams):
    config_id: Annotated[int | None, Field(default=None, gt=0, description="Configuration profile to boot with")]


class AccountSwitchParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account_name: Annotated[str, Field(min_length=1, description="Name of the configured account to switch to")]


class InstanceSummary(BaseModel):
    id: int
    label: str = ""
    status: str = ""
    region: str = ""
    type: str | None = None
    ipv4: list[str] = Field(default_factory=list)
    ipv6: str | None = None
    created: str = ""
    updated: str = ""

    @classmethod
    def from_api(cls, data: JsonDict) -> InstanceSummary:
        return cls.model_validate({k: data.get(k) for k in cls.model_fields if data.get(k) is not None})


@contextmanager
def api_errors(tool_name: str, action: str) -> Iterator[None]:
    """Turn client failures into tool errors prefixed with ``action``, keeping their code."""
    try:
        yield
    except LinodeAPIError as e:
        raise ToolException.create(tool_name, f"{action}: {e}", e.code, recoverable=e.retryable) from e


# ─────────────────────────────────────────────────────────────────────────────
# Formatting
# ─────────────────────────────────────────────────────────────────────────────


def _yes_no(flag: object) -> str:
    return "Enabled" if flag else "Disabled"


def format_instance(instance: JsonDict) -> str:
    specs = instance.get("specs") or {}
    ipv4 = ", ".join(instance.get("ipv4") or [])
    text = (
        "Instance Details:\n"
        f"ID: {instance.get('id')}\n"
        f"Label: {instance.get('label', '')}\n"
        f"Status: {instance.get('status', '')}\n"
        f"Region: {instance.get('region', '')}\n"
        f"Type: {instance.get('type', '')}\n"
        f"Image: {instance.get('image') or ''}\n\n"
        "Specifications:\n"
        f"- CPUs: {specs.get('vcpus', 0)}\n"
        f"- Memory: {specs.get('memory', 0)} MB\n"
        f"- Disk: {specs.get('disk', 0) // MB_PER_GB} GB\n"
        f"- Transfer: {specs.get('transfer', 0)} GB\n\n"
        "Network:\n"
        f"- IPv4: {ipv4}\n"
        f"- IPv6: {instance.get('ipv6') or ''}\n\n"
        f"Created: {instance.get('created', '')}\n"
        f"Updated: {instance.get('updated', '')}\n\n"
        f"Backups: {_yes_no((instance.get('backups') or {}).get('enabled'))}\n"
        f"Watchdog: {_yes_no(instance.get('watchdog_enabled'))}"
    )
    if tags := instance.get("tags"):
        text += "\nTags: " + ", ".join(tags)
    return text


def format_instances(instances: list[JsonDict]) -> str:
    if not instances:
        return "No Linode instances found."
    lines = [f"Found {len(instances)} Linode instance(s):", ""]
    for inst in map(InstanceSummary.from_api, instances):
        lines.append(f"ID: {inst.id} | {inst.label}")
        lines.append(f"  Status: {inst.status} | Region: {inst.region} | Type: {inst.type or ''}")
        if inst.ipv4:
            lines.append(f"  IPv4: {', '.join(inst.ipv4)}")
        lines.append("")
    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# Service-backed tools
# ─────────────────────────────────────────────────────────────────────────────


class LinodeTool(BaseTool[EmptyParams]):
    """Base for tools that run against ``LinodeService``."""

    def __init__(self, service: LinodeService) -> None:
        self.service = service


class AccountInfoTool(LinodeTool):
    metadata = ToolMetadata(
        name="linode_account_info",
        description="Get information about the current Linode account",
        category="account",
    )

    async def _run(self, params: EmptyParams, ctx: ExecutionContext) -> str:
        account = self.service.accounts.current()
        with api_errors(self.name, "failed to get profile"):
            profile = await self.service.get_profile()
        return (f"Account: {account.name} ({account.label})\n"
                f"Username: {profile.get('username', '')}\n"
                f"Email: {profile.get('email', '')}\n"
                f"UID: {profile.get('uid', 0)}\n"
                f"Restricted: {str(bool(profile.get('restricted'))).lower()}")


class InstancesListTool(LinodeTool):
    metadata = ToolMetadata(
        name="linode_instances_list",
        description="List all Linode instances in the current account",
        category="compute",
    )

    async def _run(self, params: EmptyParams, ctx: ExecutionContext) -> str:
        with api_errors(self.name, "failed to list instances"):
            return format_instances(await self.service.list_instances())


class InstanceGetTool(BaseTool[InstanceParams]):
    metadata = ToolMetadata(
        name="linode_instance_get",
        description="Get details about a specific Linode instance",
        category="compute",
    )
    params_schema = InstanceParams

    def __init__(self, service: LinodeService) -> None:
        self.service = service

    async def _run(self, params: InstanceParams, ctx: ExecutionContext) -> str:
        with api_errors(self.name, f"failed to get instance {params.instance_id}"):
            return format_instance(await self.service.get_instance(params.instance_id))


class _PowerTool(BaseTool[PowerParams]):
    params_schema = PowerParams
    verb: str
    progress: str

    def __init__(self, service: LinodeService) -> None:
        self.service = service

    @abstractmethod
    async def _call(self, params: PowerParams) -> JsonDict: ...

    async def _run(self, params: PowerParams, ctx: ExecutionContext) -> str:
        with api_errors(self.name, f"failed to {self.verb} instance {params.instance_id}"):
            instance = await self._call(params)
        return (f"Instance {self.verb} initiated successfully!\n\n"
                f"Instance: {instance.get('label', '')} (ID: {instance.get('id', params.instance_id)})\n"
                f"Status: {instance.get('status', '')}\n"
                f"Region: {instance.get('region', '')}\n\n"
                f"The instance is now {self.progress}.")


class InstanceBootTool(_PowerTool):
    metadata = ToolMetadata(name="linode_instance_boot", description="Boot a Linode instance", category="compute")
    verb, progress = "boot", "booting up"

    async def _call(self, params: PowerParams) -> JsonDict:
        return await self.service.boot_instance(params.instance_id, params.config_id)


class InstanceRebootTool(_PowerTool):
    metadata = ToolMetadata(name="linode_instance_reboot", description="Reboot a Linode instance", category="compute")
    verb, progress = "reboot", "rebooting"

    async def _call(self, params: PowerParams) -> JsonDict:
        return await self.service.reboot_instance(params.instance_id, params.config_id)


class InstanceShutdownTool(_PowerTool):
    metadata = ToolMetadata(name="linode_instance_shutdown", description="Shut down a Linode instance",
                            category="compute")
    params_schema = InstanceParams
    verb, progress = "shutdown", "shutting down"

    async def _call(self, params: PowerParams) -> JsonDict:
        return await self.service.shutdown_instance(params.instance_id)


class InstanceDeleteTool(BaseTool[InstanceParams]):
    metadata = ToolMetadata(
        name="linode_instance_delete",
        description="Delete a Linode instance and all of its disks",
        category="compute",
    )
    params_schema = InstanceParams

    def __init__(self, service: LinodeService) -> None:
        self.service = service

    async def _run(self, params: InstanceParams, ctx: ExecutionContext) -> str:
        with api_errors(self.name, f"failed to delete instance {params.instance_id}"):
            instance = await self.service.delete_instance(params.instance_id)
        return ("Instance deleted successfully!\n\n"
                "Deleted Instance:\n"
                f"- ID: {instance.get('id', params.instance_id)}\n"
                f"- Label: {instance.get('label', '')}\n"
                f"- Region: {instance.get('region', '')}\n"
                f"- Type: {instance.get('type', '')}\n\n"
                "The instance and all its disks have been permanently deleted.")


class RegionsListTool(LinodeTool):
    metadata = ToolMetadata(name="linode_regions_list", description="List available Linode regions",
                            category="compute")

    async def _run(self, params: EmptyParams, ctx: ExecutionContext) -> JsonDict:
        with api_errors(self.name, "failed to list regions"):
            regions = await self.service.list_regions()
        return {
            "count": len(regions),
            "regions": [{k: r.get(k) for k in ("id", "label", "country", "status", "capabilities")} for r in regions],
        }


class AccountListTool(LinodeTool):
    metadata = ToolMetadata(name="cloudmcp_account_list", description="List all configured Linode accounts",
                            category="account")

    async def _run(self, params: EmptyParams, ctx: ExecutionContext) -> str:
        current = self.service.accounts.current_name
        lines = [f"Current account: {current}", "", "Configured accounts:"]
        for name, label in self.service.accounts.list().items():
            lines.append(f"* {name}: {label} (current)" if name == current else f"  {name}: {label}")
        return "\n".join(lines)


class AccountSwitchTool(BaseTool[AccountSwitchParams]):
    metadata = ToolMetadata(name="cloudmcp_account_switch", description="Switch to a different Linode account",
                            category="account")
    params_schema = AccountSwitchParams

    def __init__(self, service: LinodeService) -> None:
        self.service = service

    async def _run(self, params: AccountSwitchParams, ctx: ExecutionContext) -> str:
        try:
            with api_errors(self.name, "failed to verify switched account"):
                account, profile = await self.service.switch_account(params.account_name)
        except AccountNotFoundError as e:
            raise ToolException.create(self.name, f"Failed to switch account: {e}", e.code, recoverable=False) from e
        return (f"Successfully switched to account: {account.name} ({account.label})\n"
                f"Username: {profile.get('username', '')}")


# ─────────────────────────────────────────────────────────────────────────────
# Provider-native tools
# ─────────────────────────────────────────────────────────────────────────────


class NativeAccountInfoTool(AccountInfoTool):
    """Account info straight from the API as JSON."""

    async def _run(self, params: EmptyParams, ctx: ExecutionContext) -> JsonDict:
        client = self.service.client()
        with api_errors(self.name, "failed to get account"):
            profile = await client.get_profile()
            account = await client.get_account()
        return {
            "account": client.account.name,
            "label": client.account.label,
            "username": profile.get("username"),
            "email": account.get("email") or profile.get("email"),
            "company": account.get("company"),
            "balance": account.get("balance"),
            "restricted": bool(profile.get("restricted")),
        }


class NativeInstancesListTool(InstancesListTool):
    """Instance summaries straight from the API as JSON."""

    async def _run(self, params: EmptyParams, ctx: ExecutionContext) -> JsonDict:
        with api_errors(self.name, "failed to list instances"):
            instances = await self.service.client().list_instances()
        return {
            "instances": [InstanceSummary.from_api(i).model_dump() for i in instances],
            "count": len(instances),
        }


SERVICE_TOOLS: tuple[type[BaseTool], ...] = (
    AccountInfoTool, InstancesListTool, InstanceGetTool, InstanceBootTool, InstanceShutdownTool,
    InstanceRebootTool, InstanceDeleteTool, RegionsListTool, AccountListTool, AccountSwitchTool,
)

NATIVE_TOOLS: tuple[type[BaseTool], ...] = (NativeAccountInfoTool, NativeInstancesListTool)
