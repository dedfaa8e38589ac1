"""Migration state models.

Settings and the global config are mutated in place by the router under its
lock; everything handed out of the router is a deep copy.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator

Percentage = Annotated[int, Field(ge=0, le=100)]

# Latency samples kept per tool and arm; the oldest LATENCY_TRIM are dropped past the cap
MAX_LATENCY_HISTORY = 10_000
LATENCY_TRIM = 1_000


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ToolMigrationSettings(BaseModel):
    """Per-tool routing settings. Force flags are mutually exclusive."""

    model_config = ConfigDict(validate_assignment=True)

    tool_name: str
    migration_enabled: bool = True
    traffic_percentage: Percentage = 0
    force_provider_native: bool = False
    force_service_backed: bool = False
    last_updated: datetime = Field(default_factory=utcnow)
    updated_by: str = "system"

    @model_validator(mode="after")
    def _exclusive_force_flags(self) -> ToolMigrationSettings:
        if self.force_provider_native and self.force_service_backed:
            raise ValueError("force_provider_native and force_service_backed are mutually exclusive")
        return self


class GlobalMigrationConfig(BaseModel):
    """Server-wide switches. ``rollback_mode`` is the kill-switch."""

    model_config = ConfigDict(validate_assignment=True)

    migration_enabled: bool = True
    default_percentage: Percentage = 0
    max_percentage: Percentage = 100
    rollback_mode: bool = False
    maintenance_mode: bool = False
    last_updated: datetime = Field(default_factory=utcnow)
    updated_by: str = "system"


class MigrationMetrics(BaseModel):
    """Execution counters and latency samples (ms) per tool and arm."""

    provider_native_executions: dict[str, int] = Field(default_factory=dict)
    service_backed_executions: dict[str, int] = Field(default_factory=dict)
    provider_native_errors: dict[str, int] = Field(default_factory=dict)
    service_backed_errors: dict[str, int] = Field(default_factory=dict)
    provider_native_latency: dict[str, list[int]] = Field(default_factory=dict)
    service_backed_latency: dict[str, list[int]] = Field(default_factory=dict)
    last_reset: datetime = Field(default_factory=utcnow)


class ArmSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    executions: int = 0
    errors: int = 0
    error_rate: float = 0.0
    avg_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0


class ToolMetricsSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_name: str
    provider_native: ArmSummary
    service_backed: ArmSummary


class BatchInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    tools_count: int
    status: str = "active"


class MigrationStatus(BaseModel):
    """Deep-copied snapshot of the router, safe to serialize."""

    model_config = ConfigDict(frozen=True)

    global_config: GlobalMigrationConfig
    tool_settings: dict[str, ToolMigrationSettings]
    total_tools: int
    metrics: MigrationMetrics
    batch_info: dict[str, BatchInfo] = Field(default_factory=dict)


class RoutingDecision(BaseModel):
    """Branch chosen for one call, with the settings it was chosen under."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    provider_native: bool
    reason: str
    settings: ToolMigrationSettings | None = None
    decided_at: datetime = Field(default_factory=utcnow)

    @property
    def arm(self) -> str:
        return "provider_native" if self.provider_native else "service_backed"
