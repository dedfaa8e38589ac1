"""Metrics sinks.

Middleware emit through the small ``MetricsCollector`` protocol and never know
which backend is behind it:

- ``NoOpMetricsCollector``: discards everything
- ``LogMetricsCollector``: structured debug log per sample
- ``InMemoryMetricsCollector``: keeps samples, used by tests and the health report
- ``PrometheusMetricsCollector``: prometheus-client metrics with an optional
  HTTP exposition endpoint

Example:
    >>> collector = InMemoryMetricsCollector()
    >>> collector.counter("cloudmcp.tool.executions.started", 1, {"tool": "hello"})
    >>> collector.total("cloudmcp.tool.executions.started")
    1.0
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from cloudmcp.runtime.observability.logging import BoundLogger, get_logger

Tags = dict[str, str]
MetricKind = Literal["counter", "gauge", "histogram", "timing"]


@runtime_checkable
class MetricsCollector(Protocol):
    """Sink for counters, gauges, histograms and timings."""

    def counter(self, name: str, value: float = 1, tags: Tags | None = None) -> None: ...
    def gauge(self, name: str, value: float, tags: Tags | None = None) -> None: ...
    def histogram(self, name: str, value: float, tags: Tags | None = None) -> None: ...
    def timing(self, name: str, value_ms: float, tags: Tags | None = None) -> None: ...


class NoOpMetricsCollector:
    """Discards all metrics."""

    __slots__ = ()

    def counter(self, name: str, value: float = 1, tags: Tags | None = None) -> None: ...
    def gauge(self, name: str, value: float, tags: Tags | None = None) -> None: ...
    def histogram(self, name: str, value: float, tags: Tags | None = None) -> None: ...
    def timing(self, name: str, value_ms: float, tags: Tags | None = None) -> None: ...


@dataclass(slots=True)
class LogMetricsCollector:
    """Writes every sample as a debug log record."""

    log: BoundLogger = field(default_factory=lambda: get_logger("cloudmcp.metrics"))

    def _emit(self, kind: MetricKind, name: str, value: float, tags: Tags | None) -> None:
        self.log.debug("metric", kind=kind, name=name, value=value, tags=tags or {})

    def counter(self, name: str, value: float = 1, tags: Tags | None = None) -> None:
        self._emit("counter", name, value, tags)

    def gauge(self, name: str, value: float, tags: Tags | None = None) -> None:
        self._emit("gauge", name, value, tags)

    def histogram(self, name: str, value: float, tags: Tags | None = None) -> None:
        self._emit("histogram", name, value, tags)

    def timing(self, name: str, value_ms: float, tags: Tags | None = None) -> None:
        self._emit("timing", name, value_ms, tags)


@dataclass(frozen=True, slots=True)
class Sample:
    kind: MetricKind
    name: str
    value: float
    tags: Tags


@dataclass(slots=True)
class InMemoryMetricsCollector:
    """Records samples in memory."""

    samples: list[Sample] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _add(self, kind: MetricKind, name: str, value: float, tags: Tags | None) -> None:
        with self._lock:
            self.samples.append(Sample(kind, name, float(value), dict(tags or {})))

    def counter(self, name: str, value: float = 1, tags: Tags | None = None) -> None:
        self._add("counter", name, value, tags)

    def gauge(self, name: str, value: float, tags: Tags | None = None) -> None:
        self._add("gauge", name, value, tags)

    def histogram(self, name: str, value: float, tags: Tags | None = None) -> None:
        self._add("histogram", name, value, tags)

    def timing(self, name: str, value_ms: float, tags: Tags | None = None) -> None:
        self._add("timing", name, value_ms, tags)

    def find(self, name: str, **tags: str) -> list[Sample]:
        """Samples with ``name`` whose tags include every given key/value."""
        with self._lock:
            return [s for s in self.samples
                    if s.name == name and all(s.tags.get(k) == v for k, v in tags.items())]

    def total(self, name: str, **tags: str) -> float:
        return sum(s.value for s in self.find(name, **tags))

    def names(self) -> set[str]:
        with self._lock:
            return {s.name for s in self.samples}

    def clear(self) -> None:
        with self._lock:
            self.samples.clear()


_INVALID = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_metric_name(name: str) -> str:
    """Dotted metric names to Prometheus form: ``a.b-c`` -> ``a_b_c``."""
    cleaned = _INVALID.sub("_", name)
    return f"_{cleaned}" if cleaned[:1].isdigit() else cleaned


class PrometheusMetricsCollector:
    """prometheus-client backed collector.

    Metrics are created lazily in a private ``CollectorRegistry``. Label names
    are fixed by the first sample of each metric; later samples fill missing
    labels with an empty string and drop unknown ones.
    Timings are exported as histograms in seconds with a ``_seconds`` suffix.
    """

    __slots__ = ("registry", "_metrics", "_labels", "_lock", "_server")

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._metrics: dict[str, Counter | Gauge | Histogram] = {}
        self._labels: dict[str, tuple[str, ...]] = {}
        self._lock = threading.Lock()
        self._server: object | None = None

    def _metric(self, kind: MetricKind, name: str, tags: Tags) -> Counter | Gauge | Histogram:
        key = sanitize_metric_name(name) + ("_seconds" if kind == "timing" else "")
        with self._lock:
            if (metric := self._metrics.get(key)) is None:
                labels = tuple(sorted(sanitize_metric_name(k) for k in tags))
                cls = {"counter": Counter, "gauge": Gauge}.get(kind, Histogram)
                metric = cls(key, f"{kind} {name}", labelnames=labels, registry=self.registry)
                self._metrics[key], self._labels[key] = metric, labels
            labels = self._labels[key]
        if not labels:
            return metric
        clean = {sanitize_metric_name(k): str(v) for k, v in tags.items()}
        return metric.labels(**{label: clean.get(label, "") for label in labels})

    def counter(self, name: str, value: float = 1, tags: Tags | None = None) -> None:
        self._metric("counter", name, tags or {}).inc(value)  # type: ignore[union-attr]

    def gauge(self, name: str, value: float, tags: Tags | None = None) -> None:
        self._metric("gauge", name, tags or {}).set(value)  # type: ignore[union-attr]

    def histogram(self, name: str, value: float, tags: Tags | None = None) -> None:
        self._metric("histogram", name, tags or {}).observe(value)  # type: ignore[union-attr]

    def timing(self, name: str, value_ms: float, tags: Tags | None = None) -> None:
        self._metric("timing", name, tags or {}).observe(value_ms / 1000)  # type: ignore[union-attr]

    def get_sample_value(self, name: str, labels: Tags | None = None) -> float | None:
        """Current value of an exported series, by its exposition name."""
        return self.registry.get_sample_value(name, labels or {})

    def start_server(self, port: int, addr: str = "0.0.0.0") -> None:
        """Serve ``/metrics`` over HTTP on ``port``."""
        self._server = start_http_server(port, addr=addr, registry=self.registry)
