"""Metrics collectors."""

from .collector import (
    InMemoryMetricsCollector,
    LogMetricsCollector,
    MetricsCollector,
    NoOpMetricsCollector,
    PrometheusMetricsCollector,
    Sample,
    Tags,
    sanitize_metric_name,
)

__all__ = [
    "MetricsCollector", "Tags", "Sample",
    "NoOpMetricsCollector", "LogMetricsCollector", "InMemoryMetricsCollector", "PrometheusMetricsCollector",
    "sanitize_metric_name",
]
