"""Gradual-migration router.

Per tool, decides whether a call goes to the legacy service-backed
implementation or the provider-native one. Decisions follow, in order:

1. Global switches: migration disabled, rollback mode or maintenance mode
   send everything to service-backed.
2. Unknown tools and tools with migration disabled go service-backed.
3. Force flags win over the percentage.
4. Otherwise a uniform draw from ``secrets.randbelow(100)`` is compared with
   the tool's traffic percentage (0 and 100 are exact).

Settings and metrics have separate locks, so recording metrics never blocks
routing decisions.

Example:
    >>> router = MigrationRouter.with_default_batches()
    >>> router.set_tool_migration_percentage("linode_instances_list", 25, "ops")
    >>> router.should_use_provider_native("linode_instances_list")  # True ~25% of the time
"""

from __future__ import annotations

import math
import secrets
import threading
from collections.abc import Callable, Iterable

from cloudmcp.foundation.errors import DuplicateRegistrationError, MigrationSettingsError, MigrationToolNotFoundError
from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

from .batches import DEFAULT_BATCHES, MigrationBatch
from .models import (
    LATENCY_TRIM,
    MAX_LATENCY_HISTORY,
    ArmSummary,
    BatchInfo,
    GlobalMigrationConfig,
    MigrationMetrics,
    MigrationStatus,
    RoutingDecision,
    ToolMetricsSummary,
    ToolMigrationSettings,
    utcnow,
)

RandomSource = Callable[[int], int]


class MigrationRouter:
    """Per-tool routing between service-backed and provider-native back-ends."""

    __slots__ = ("_settings", "_global", "_metrics", "_batches", "_lock", "_metrics_lock", "_rng", "_log")

    def __init__(self, *, rng: RandomSource = secrets.randbelow, log: BoundLogger | None = None) -> None:
        self._settings: dict[str, ToolMigrationSettings] = {}
        self._global = GlobalMigrationConfig()
        self._metrics = MigrationMetrics()
        self._batches: list[MigrationBatch] = []
        self._lock = threading.RLock()
        self._metrics_lock = threading.Lock()
        self._rng = rng
        self._log = log or get_logger("cloudmcp.migration")

    @classmethod
    def with_default_batches(cls, **kw: object) -> MigrationRouter:
        """Router seeded with the Linode batches 1-4 at 0% provider-native."""
        router = cls(**kw)  # type: ignore[arg-type]
        for batch in DEFAULT_BATCHES:
            router.add_batch(batch)
        return router

    # ─────────────────────────────────────────────────────────────────
    # Registration
    # ─────────────────────────────────────────────────────────────────

    def add_batch(self, batch: MigrationBatch) -> None:
        """Register every tool of ``batch`` (already known tools are kept as they are)."""
        with self._lock:
            self._batches.append(batch)
            for name in batch.tools:
                self._settings.setdefault(name, ToolMigrationSettings(
                    tool_name=name, traffic_percentage=self._global.default_percentage,
                ))
        self._log.info("initialized migration batch", batch=batch.name, tools=batch.tools_count)

    def register_tool(self, tool_name: str, percentage: int | None = None, *, updated_by: str = "system") -> None:
        """Add settings for a tool, starting at ``percentage`` or the global default."""
        with self._lock:
            if tool_name in self._settings:
                raise DuplicateRegistrationError("migration tool", tool_name)
            pct = self._global.default_percentage if percentage is None else percentage
            self._check_percentage(pct)
            self._settings[tool_name] = ToolMigrationSettings(
                tool_name=tool_name, traffic_percentage=pct, updated_by=updated_by,
            )

    def register_tools(self, names: Iterable[str]) -> None:
        for name in names:
            if not self.is_tracked(name):
                self.register_tool(name)

    def is_tracked(self, tool_name: str) -> bool:
        with self._lock:
            return tool_name in self._settings

    def tool_names(self) -> list[str]:
        with self._lock:
            return sorted(self._settings)

    # ─────────────────────────────────────────────────────────────────
    # Routing
    # ─────────────────────────────────────────────────────────────────

    def decide(self, tool_name: str) -> RoutingDecision:
        """Choose a branch and snapshot the settings it was chosen under."""
        with self._lock:
            g = self._global
            settings = self._settings.get(tool_name)
            snapshot = settings.model_copy() if settings else None
            if not g.migration_enabled:
                return self._decision(tool_name, False, "global_migration_disabled", snapshot)
            if g.rollback_mode:
                return self._decision(tool_name, False, "rollback_mode", snapshot)
            if g.maintenance_mode:
                return self._decision(tool_name, False, "maintenance_mode", snapshot)
        if snapshot is None:
            return self._decision(tool_name, False, "not_tracked", None)
        if not snapshot.migration_enabled:
            return self._decision(tool_name, False, "tool_migration_disabled", snapshot)
        if snapshot.force_service_backed:
            return self._decision(tool_name, False, "forced_service_backed", snapshot)
        if snapshot.force_provider_native:
            return self._decision(tool_name, True, "forced_provider_native", snapshot)

        p = snapshot.traffic_percentage
        if p <= 0:
            return self._decision(tool_name, False, "percentage_zero", snapshot)
        if p >= 100:
            return self._decision(tool_name, True, "percentage_full", snapshot)
        try:
            draw = self._rng(100)
        except Exception as e:
            self._log.error("Failed to generate random number for routing", tool=tool_name, error=str(e))
            return self._decision(tool_name, False, "rng_failure", snapshot)
        return self._decision(tool_name, draw < p, "percentage_draw", snapshot)

    @staticmethod
    def _decision(tool_name: str, native: bool, reason: str, settings: ToolMigrationSettings | None) -> RoutingDecision:
        return RoutingDecision(tool_name=tool_name, provider_native=native, reason=reason, settings=settings)

    def should_use_provider_native(self, tool_name: str) -> bool:
        return self.decide(tool_name).provider_native

    # ─────────────────────────────────────────────────────────────────
    # Per-tool settings
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _check_percentage(percentage: int) -> None:
        if not 0 <= percentage <= 100:
            raise MigrationSettingsError(f"percentage must be between 0 and 100, got {percentage}")

    def _require(self, tool_name: str) -> ToolMigrationSettings:
        if (settings := self._settings.get(tool_name)) is None:
            raise MigrationToolNotFoundError(tool_name)
        return settings

    def _touch(self, settings: ToolMigrationSettings | GlobalMigrationConfig, updated_by: str) -> None:
        settings.last_updated, settings.updated_by = utcnow(), updated_by

    def set_tool_migration_percentage(self, tool_name: str, percentage: int, updated_by: str) -> None:
        """Set the share of calls routed provider-native.

        Raises:
            MigrationSettingsError: outside 0..100 or above the global maximum
            MigrationToolNotFoundError: tool has no migration settings
        """
        self._check_percentage(percentage)
        with self._lock:
            settings = self._require(tool_name)
            if percentage > self._global.max_percentage:
                raise MigrationSettingsError(
                    f"percentage exceeds global maximum: {percentage} exceeds {self._global.max_percentage}"
                )
            old = settings.traffic_percentage
            settings.traffic_percentage = percentage
            self._touch(settings, updated_by)
        self._log.info("Updated tool migration percentage", tool=tool_name, old_percentage=old,
                       new_percentage=percentage, updated_by=updated_by)

    def enable_tool_migration(self, tool_name: str, updated_by: str) -> None:
        with self._lock:
            settings = self._require(tool_name)
            settings.migration_enabled = True
            self._touch(settings, updated_by)
        self._log.info("Enabled tool migration", tool=tool_name, updated_by=updated_by)

    def disable_tool_migration(self, tool_name: str, updated_by: str) -> None:
        with self._lock:
            settings = self._require(tool_name)
            settings.migration_enabled = False
            self._touch(settings, updated_by)
        self._log.info("Disabled tool migration", tool=tool_name, updated_by=updated_by)

    def force_provider_native(self, tool_name: str, updated_by: str) -> None:
        with self._lock:
            settings = self._require(tool_name)
            settings.force_service_backed = False
            settings.force_provider_native = True
            self._touch(settings, updated_by)
        self._log.info("Forced tool to provider-native", tool=tool_name, updated_by=updated_by)

    def force_service_backed(self, tool_name: str, updated_by: str) -> None:
        with self._lock:
            settings = self._require(tool_name)
            settings.force_provider_native = False
            settings.force_service_backed = True
            self._touch(settings, updated_by)
        self._log.info("Forced tool to service-backed", tool=tool_name, updated_by=updated_by)

    def clear_force_flags(self, tool_name: str, updated_by: str) -> None:
        with self._lock:
            settings = self._require(tool_name)
            settings.force_provider_native = False
            settings.force_service_backed = False
            self._touch(settings, updated_by)
        self._log.info("Cleared force flags for tool", tool=tool_name, updated_by=updated_by)

    def get_tool_migration_settings(self, tool_name: str) -> ToolMigrationSettings | None:
        with self._lock:
            settings = self._settings.get(tool_name)
            return settings.model_copy() if settings else None

    # ─────────────────────────────────────────────────────────────────
    # Global switches
    # ─────────────────────────────────────────────────────────────────

    def enable_global_rollback(self, updated_by: str) -> None:
        with self._lock:
            self._global.rollback_mode = True
            self._touch(self._global, updated_by)
        self._log.warning("Enabled global rollback mode", updated_by=updated_by)

    def disable_global_rollback(self, updated_by: str) -> None:
        with self._lock:
            self._global.rollback_mode = False
            self._touch(self._global, updated_by)
        self._log.info("Disabled global rollback mode", updated_by=updated_by)

    def enable_maintenance_mode(self, updated_by: str) -> None:
        with self._lock:
            self._global.maintenance_mode = True
            self._touch(self._global, updated_by)
        self._log.warning("Enabled maintenance mode", updated_by=updated_by)

    def disable_maintenance_mode(self, updated_by: str) -> None:
        with self._lock:
            self._global.maintenance_mode = False
            self._touch(self._global, updated_by)
        self._log.info("Disabled maintenance mode", updated_by=updated_by)

    def set_global_migration_enabled(self, enabled: bool, updated_by: str) -> None:
        with self._lock:
            self._global.migration_enabled = enabled
            self._touch(self._global, updated_by)
        self._log.info("Set global migration", enabled=enabled, updated_by=updated_by)

    def set_max_percentage(self, max_percentage: int, updated_by: str) -> None:
        """Lower or raise the global cap. Tools above a lowered cap are clamped to it."""
        self._check_percentage(max_percentage)
        with self._lock:
            self._global.max_percentage = max_percentage
            self._touch(self._global, updated_by)
            for settings in self._settings.values():
                if settings.traffic_percentage > max_percentage:
                    settings.traffic_percentage = max_percentage
                    self._touch(settings, updated_by)
        self._log.info("Set global max percentage", max_percentage=max_percentage, updated_by=updated_by)

    def global_config(self) -> GlobalMigrationConfig:
        with self._lock:
            return self._global.model_copy()

    # ─────────────────────────────────────────────────────────────────
    # Metrics
    # ─────────────────────────────────────────────────────────────────

    def record_execution(self, tool_name: str, is_provider_native: bool, success: bool, latency_ms: int) -> None:
        with self._metrics_lock:
            m = self._metrics
            if is_provider_native:
                executions, errors, latency = m.provider_native_executions, m.provider_native_errors, m.provider_native_latency
            else:
                executions, errors, latency = m.service_backed_executions, m.service_backed_errors, m.service_backed_latency
            executions[tool_name] = executions.get(tool_name, 0) + 1
            if not success:
                errors[tool_name] = errors.get(tool_name, 0) + 1
            samples = latency.setdefault(tool_name, [])
            samples.append(int(latency_ms))
            if len(samples) > MAX_LATENCY_HISTORY:
                del samples[:LATENCY_TRIM]

    def reset_metrics(self) -> None:
        with self._metrics_lock:
            self._metrics = MigrationMetrics()
        self._log.info("Reset migration metrics")

    def _metrics_snapshot(self) -> MigrationMetrics:
        with self._metrics_lock:
            return self._metrics.model_copy(deep=True)

    def summarize(self, tool_name: str) -> ToolMetricsSummary:
        """Error rates and latency figures for both arms of one tool."""
        m = self._metrics_snapshot()
        return ToolMetricsSummary(
            tool_name=tool_name,
            provider_native=_summarize(m.provider_native_executions.get(tool_name, 0),
                                       m.provider_native_errors.get(tool_name, 0),
                                       m.provider_native_latency.get(tool_name, [])),
            service_backed=_summarize(m.service_backed_executions.get(tool_name, 0),
                                      m.service_backed_errors.get(tool_name, 0),
                                      m.service_backed_latency.get(tool_name, [])),
        )

    def get_migration_status(self) -> MigrationStatus:
        """Deep copy of settings, global config and metrics."""
        with self._lock:
            global_config = self._global.model_copy()
            settings = {name: s.model_copy() for name, s in self._settings.items()}
            batches = list(self._batches)
        return MigrationStatus(
            global_config=global_config,
            tool_settings=settings,
            total_tools=len(settings),
            metrics=self._metrics_snapshot(),
            batch_info={b.key: BatchInfo(name=b.name, description=b.description, tools_count=b.tools_count)
                        for b in batches},
        )


def _summarize(executions: int, errors: int, samples: list[int]) -> ArmSummary:
    if not samples:
        return ArmSummary(executions=executions, errors=errors,
                          error_rate=errors / executions if executions else 0.0)
    ordered = sorted(samples)
    p95 = ordered[min(len(ordered) - 1, math.ceil(0.95 * len(ordered)) - 1)]
    return ArmSummary(
        executions=executions, errors=errors,
        error_rate=errors / executions if executions else 0.0,
        avg_latency_ms=sum(ordered) / len(ordered), p95_latency_ms=float(p95),
    )
