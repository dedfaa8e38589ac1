"""Dispatcher tool that routes each call to one of two implementations.

``MigrationDispatchTool`` looks like a single ``Tool`` to the registry and the
middleware chain. Per call it asks the router for a decision once, runs the
chosen branch and records the outcome against that decision, so a force flag
flipped mid-call cannot split a call's routing from its metrics.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from cloudmcp.foundation.errors import JsonDict
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.core import Tool

    from .router import MigrationRouter


class MigrationDispatchTool:
    """``Tool`` facade over a service-backed and a provider-native implementation.

    Name, description and schema come from the service-backed implementation;
    both implementations must accept the same arguments.
    """

    __slots__ = ("service_backed", "provider_native", "router", "_log")

    def __init__(self, service_backed: Tool, provider_native: Tool, router: MigrationRouter,
                 log: BoundLogger | None = None) -> None:
        if service_backed.name != provider_native.name:
            raise ValueError(
                f"implementations disagree on the tool name: {service_backed.name!r} != {provider_native.name!r}"
            )
        self.service_backed = service_backed
        self.provider_native = provider_native
        self.router = router
        self._log = log or get_logger("cloudmcp.migration.dispatch")

    @property
    def name(self) -> str:
        return self.service_backed.name

    @property
    def description(self) -> str:
        return self.service_backed.description

    @property
    def input_schema(self) -> JsonDict:
        return self.service_backed.input_schema

    def validate(self, params: JsonDict) -> None:
        self.service_backed.validate(params)

    async def execute(self, params: JsonDict, ctx: ExecutionContext) -> object:
        decision = self.router.decide(self.name)
        impl = self.provider_native if decision.provider_native else self.service_backed
        ctx["migration_arm"] = decision.arm
        ctx["migration_reason"] = decision.reason
        self._log.debug("migration routing decision", tool=self.name, arm=decision.arm,
                        reason=decision.reason, request_id=ctx.request_id)

        start = time.perf_counter()
        success = False
        try:
            result = await impl.execute(params, ctx)
            success = True
            return result
        finally:
            latency_ms = int((time.perf_counter() - start) * 1000)
            if decision.settings is not None:
                self.router.record_execution(self.name, decision.provider_native, success, latency_ms)

    def __repr__(self) -> str:
        return f"MigrationDispatchTool(name={self.name!r})"
