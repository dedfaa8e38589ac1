"""Observability: structured logging and metrics collectors."""

from .logging import (
    BoundLogger,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    MemoryRenderer,
    NoOpRenderer,
    configure_logging,
    get_logger,
    log_context,
    set_renderer,
    timed,
)
from .metrics import (
    InMemoryMetricsCollector,
    LogMetricsCollector,
    MetricsCollector,
    NoOpMetricsCollector,
    PrometheusMetricsCollector,
)

__all__ = [
    "BoundLogger", "LogEntry", "ConsoleRenderer", "JsonRenderer", "NoOpRenderer", "MemoryRenderer",
    "configure_logging", "get_logger", "log_context", "set_renderer", "timed",
    "MetricsCollector", "NoOpMetricsCollector", "LogMetricsCollector",
    "InMemoryMetricsCollector", "PrometheusMetricsCollector",
]
