"""Tests for the migration router and the dispatch tool.

Validates:
- Percentage routing distribution and its exact endpoints
- Force flags over percentages, global switches over everything
- Settings validation, clamping and deep-copied status
- Per-arm metrics recorded against the decision that routed the call
"""

from __future__ import annotations

import pytest

from cloudmcp.foundation.context import ExecutionContext
from cloudmcp.foundation.errors import (
    DuplicateRegistrationError,
    MigrationSettingsError,
    MigrationToolNotFoundError,
)
from cloudmcp.foundation.testing import MockTool
from cloudmcp.migration import (
    DEFAULT_BATCHES,
    LATENCY_TRIM,
    MAX_LATENCY_HISTORY,
    MigrationDispatchTool,
    MigrationRouter,
)

TOOL = "linode_instances_list"


@pytest.fixture
def router() -> MigrationRouter:
    return MigrationRouter.with_default_batches()


def native_share(router: MigrationRouter, tool: str, n: int) -> int:
    return sum(router.should_use_provider_native(tool) for _ in range(n))


# ═════════════════════════════════════════════════════════════════════════════
# Routing
# ═════════════════════════════════════════════════════════════════════════════


def test_percentage_distribution(router: MigrationRouter) -> None:
    """30% over 1000 decisions lands within ten points of the target."""
    router.set_tool_migration_percentage(TOOL, 30, "test")
    assert 200 <= native_share(router, TOOL, 1000) <= 400


@pytest.mark.parametrize("percentage,expected", [(0, 0), (100, 100)])
def test_percentage_endpoints_are_exact(router: MigrationRouter, percentage: int, expected: int) -> None:
    router.set_tool_migration_percentage(TOOL, percentage, "test")
    assert native_share(router, TOOL, 100) == expected


def test_draw_is_compared_with_percentage() -> None:
    draws = iter([29, 30])
    router = MigrationRouter(rng=lambda n: next(draws))
    router.register_tool(TOOL, 30)

    first, second = router.decide(TOOL), router.decide(TOOL)

    assert (first.provider_native, first.reason) == (True, "percentage_draw")
    assert second.provider_native is False


def test_rng_failure_falls_back_to_service_backed() -> None:
    def broken(n: int) -> int:
        raise OSError("entropy source unavailable")

    router = MigrationRouter(rng=broken)
    router.register_tool(TOOL, 50)

    decision = router.decide(TOOL)
    assert (decision.provider_native, decision.reason) == (False, "rng_failure")


def test_force_flags_override_percentage(router: MigrationRouter) -> None:
    router.set_tool_migration_percentage(TOOL, 0, "test")
    router.force_provider_native(TOOL, "test")
    assert native_share(router, TOOL, 50) == 50

    router.set_tool_migration_percentage(TOOL, 100, "test")
    router.force_service_backed(TOOL, "test")
    assert native_share(router, TOOL, 50) == 0

    settings = router.get_tool_migration_settings(TOOL)
    assert settings is not None
    assert (settings.force_provider_native, settings.force_service_backed) == (False, True)

    router.clear_force_flags(TOOL, "test")
    assert native_share(router, TOOL, 50) == 50


def test_rollback_dominates_everything(router: MigrationRouter) -> None:
    router.set_tool_migration_percentage(TOOL, 100, "test")
    router.force_provider_native(TOOL, "test")
    router.enable_global_rollback("oncall")

    assert native_share(router, TOOL, 20) == 0
    assert router.decide(TOOL).reason == "rollback_mode"

    router.disable_global_rollback("oncall")
    assert router.should_use_provider_native(TOOL)


def test_maintenance_and_global_switch(router: MigrationRouter) -> None:
    router.set_tool_migration_percentage(TOOL, 100, "test")

    router.enable_maintenance_mode("ops")
    assert router.decide(TOOL).reason == "maintenance_mode"
    router.disable_maintenance_mode("ops")

    router.set_global_migration_enabled(False, "ops")
    assert router.decide(TOOL).reason == "global_migration_disabled"
    router.set_global_migration_enabled(True, "ops")

    assert router.decide(TOOL).reason == "percentage_full"


def test_untracked_and_disabled_tools(router: MigrationRouter) -> None:
    assert router.decide("hello").reason == "not_tracked"

    router.set_tool_migration_percentage(TOOL, 100, "test")
    router.disable_tool_migration(TOOL, "test")
    assert router.decide(TOOL).reason == "tool_migration_disabled"
    router.enable_tool_migration(TOOL, "test")
    assert router.should_use_provider_native(TOOL)


def test_decision_settings_are_a_snapshot(router: MigrationRouter) -> None:
    router.set_tool_migration_percentage(TOOL, 100, "test")
    decision = router.decide(TOOL)

    router.set_tool_migration_percentage(TOOL, 0, "test")

    assert decision.settings is not None
    assert decision.settings.traffic_percentage == 100
    assert decision.arm == "provider_native"


# ═════════════════════════════════════════════════════════════════════════════
# Settings
# ═════════════════════════════════════════════════════════════════════════════


def test_default_batches(router: MigrationRouter) -> None:
    assert len(router.tool_names()) == sum(b.tools_count for b in DEFAULT_BATCHES) == 56
    settings = router.get_tool_migration_settings("cloudmcp_account_switch")
    assert settings is not None
    assert settings.traffic_percentage == 0 and settings.migration_enabled


def test_percentage_validation(router: MigrationRouter) -> None:
    with pytest.raises(MigrationSettingsError):
        router.set_tool_migration_percentage(TOOL, 101, "test")
    with pytest.raises(MigrationSettingsError):
        router.set_tool_migration_percentage(TOOL, -1, "test")
    with pytest.raises(MigrationToolNotFoundError):
        router.set_tool_migration_percentage("nope", 10, "test")
    with pytest.raises(MigrationToolNotFoundError):
        router.force_provider_native("nope", "test")


def test_max_percentage_caps_and_clamps(router: MigrationRouter) -> None:
    router.set_tool_migration_percentage(TOOL, 80, "test")
    router.set_max_percentage(50, "ops")

    settings = router.get_tool_migration_settings(TOOL)
    assert settings is not None
    assert settings.traffic_percentage == 50
    assert settings.updated_by == "ops"
    with pytest.raises(MigrationSettingsError, match="exceeds global maximum"):
        router.set_tool_migration_percentage(TOOL, 60, "test")


def test_updates_are_attributed(router: MigrationRouter) -> None:
    router.set_tool_migration_percentage(TOOL, 10, "alice")
    settings = router.get_tool_migration_settings(TOOL)
    assert settings is not None and settings.updated_by == "alice"

    router.enable_global_rollback("bob")
    assert router.global_config().updated_by == "bob"


def test_register_tool(router: MigrationRouter) -> None:
    router.register_tool("linode_regions_list", 25, updated_by="linode")
    assert router.is_tracked("linode_regions_list")

    with pytest.raises(DuplicateRegistrationError):
        router.register_tool("linode_regions_list")
    with pytest.raises(MigrationSettingsError):
        router.register_tool("bad_pct", 150)

    router.register_tools(["linode_regions_list", "brand_new"])
    assert router.is_tracked("brand_new")


def test_status_is_a_deep_copy(router: MigrationRouter) -> None:
    status = router.get_migration_status()
    status.tool_settings[TOOL].traffic_percentage = 99

    fresh = router.get_migration_status()
    assert fresh.tool_settings[TOOL].traffic_percentage == 0
    assert fresh.total_tools == 56
    assert set(fresh.batch_info) == {"batch_1", "batch_2", "batch_3", "batch_4"}
    assert fresh.batch_info["batch_2"].tools_count == 14


# ═════════════════════════════════════════════════════════════════════════════
# Metrics
# ═════════════════════════════════════════════════════════════════════════════


def test_summarize(router: MigrationRouter) -> None:
    for latency, ok in ((10, True), (20, False), (30, True)):
        router.record_execution(TOOL, True, ok, latency)
    router.record_execution(TOOL, False, True, 5)

    summary = router.summarize(TOOL)
    assert summary.provider_native.executions == 3
    assert summary.provider_native.errors == 1
    assert summary.provider_native.error_rate == pytest.approx(1 / 3)
    assert summary.provider_native.avg_latency_ms == pytest.approx(20)
    assert summary.provider_native.p95_latency_ms == 30
    assert summary.service_backed.executions == 1


def test_latency_history_is_trimmed(router: MigrationRouter) -> None:
    for _ in range(MAX_LATENCY_HISTORY + 1):
        router.record_execution(TOOL, False, True, 1)

    samples = router.get_migration_status().metrics.service_backed_latency[TOOL]
    assert len(samples) == MAX_LATENCY_HISTORY + 1 - LATENCY_TRIM


def test_reset_metrics(router: MigrationRouter) -> None:
    router.record_execution(TOOL, True, True, 1)
    router.reset_metrics()
    assert router.summarize(TOOL).provider_native.executions == 0


# ═════════════════════════════════════════════════════════════════════════════
# Dispatch
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_dispatch_follows_router(router: MigrationRouter) -> None:
    service, native = MockTool(TOOL, return_value="service"), MockTool(TOOL, return_value="native")
    dispatch = MigrationDispatchTool(service, native, router)

    ctx = ExecutionContext.create(TOOL)
    assert await dispatch.execute({}, ctx) == "service"
    assert ctx["migration_arm"] == "service_backed"

    router.set_tool_migration_percentage(TOOL, 100, "test")
    ctx = ExecutionContext.create(TOOL)
    assert await dispatch.execute({}, ctx) == "native"
    assert ctx["migration_reason"] == "percentage_full"

    summary = router.summarize(TOOL)
    assert (summary.service_backed.executions, summary.provider_native.executions) == (1, 1)


@pytest.mark.asyncio
async def test_dispatch_records_errors(router: MigrationRouter) -> None:
    router.force_provider_native(TOOL, "test")
    dispatch = MigrationDispatchTool(MockTool(TOOL), MockTool(TOOL, outcomes=[ConnectionError("down")]), router)

    with pytest.raises(ConnectionError):
        await dispatch.execute({}, ExecutionContext.create(TOOL))

    assert router.summarize(TOOL).provider_native.errors == 1


@pytest.mark.asyncio
async def test_dispatch_for_untracked_tool_records_nothing(router: MigrationRouter) -> None:
    dispatch = MigrationDispatchTool(MockTool("hello"), MockTool("hello"), router)
    await dispatch.execute({}, ExecutionContext.create("hello"))

    assert router.summarize("hello").service_backed.executions == 0


def test_dispatch_validates_with_service_backed_schema(router: MigrationRouter) -> None:
    service = MockTool(TOOL, required=("region",))
    dispatch = MigrationDispatchTool(service, MockTool(TOOL), router)

    assert dispatch.input_schema["required"] == ["region"]
    assert dispatch.name == TOOL and dispatch.description == service.description
    dispatch.validate({"region": "us-east"})
    assert service.validations == 1


def test_dispatch_rejects_mismatched_names(router: MigrationRouter) -> None:
    with pytest.raises(ValueError, match="disagree"):
        MigrationDispatchTool(MockTool("a"), MockTool("b"), router)
