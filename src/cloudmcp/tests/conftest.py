"""Shared fixtures: captured logs, in-memory metrics and a manual clock."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from cloudmcp.foundation.testing import RecordingTransport
from cloudmcp.runtime.observability.logging import MemoryRenderer, set_level, set_renderer
from cloudmcp.runtime.observability.metrics import InMemoryMetricsCollector
from cloudmcp.runtime.ratelimit import FakeClock


@pytest.fixture(autouse=True)
def logs() -> Iterator[MemoryRenderer]:
    """Capture every structured log entry instead of writing to stderr."""
    renderer = MemoryRenderer()
    set_renderer(renderer)
    set_level(logging.DEBUG)
    yield renderer
    set_renderer(None)
    set_level(logging.INFO)


@pytest.fixture
def collector() -> InMemoryMetricsCollector:
    return InMemoryMetricsCollector()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()
