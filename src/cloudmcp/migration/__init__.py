"""Gradual migration between service-backed and provider-native tool implementations."""

from .batches import BATCH_1, BATCH_2, BATCH_3, BATCH_4, DEFAULT_BATCHES, MigrationBatch
from .dispatch import MigrationDispatchTool
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
)
from .router import MigrationRouter

__all__ = [
    "MigrationRouter", "MigrationDispatchTool",
    "ToolMigrationSettings", "GlobalMigrationConfig", "MigrationMetrics", "MigrationStatus",
    "RoutingDecision", "ArmSummary", "ToolMetricsSummary", "BatchInfo",
    "MigrationBatch", "BATCH_1", "BATCH_2", "BATCH_3", "BATCH_4", "DEFAULT_BATCHES",
    "MAX_LATENCY_HISTORY", "LATENCY_TRIM",
]
