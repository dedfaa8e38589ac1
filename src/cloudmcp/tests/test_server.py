"""Tests for settings, server assembly, provider start-up and exit codes."""

from __future__ import annotations

from collections.abc import Iterator

import orjson
import pytest
from pydantic import ValidationError

from cloudmcp.foundation.config import ServerSettings, clear_settings_cache, get_settings
from cloudmcp.foundation.core import Tool
from cloudmcp.foundation.errors import ConfigMissingKeysError, ProviderNotRegisteredError
from cloudmcp.foundation.testing import MockTool, RecordingTransport
from cloudmcp.providers import CloudProvider, Config, ProviderMetadata, ProviderRegistry
from cloudmcp.runtime.observability.logging import MemoryRenderer, set_renderer
from cloudmcp.runtime.observability.metrics import PrometheusMetricsCollector
from cloudmcp.server import EXIT_CONFIG, EXIT_INIT, EXIT_OK, CloudMCPServer, exit_code_for, main

SETTINGS_ENV = (
    "CLOUD_MCP_SERVER_NAME", "SERVER_NAME", "LOG_LEVEL", "LOG_FORMAT", "ENABLE_METRICS", "METRICS_PORT",
    "CLOUD_MCP_ENVIRONMENT", "CLOUD_MCP_PROVIDERS", "CLOUD_MCP_ENABLE_MIGRATION",
)


class StubProvider(CloudProvider):
    def __init__(self, name: str, journal: list[str], *, fail_init: bool = False, fail_shutdown: bool = False) -> None:
        self.metadata = ProviderMetadata(
            name=name, display_name=name.title(), version="0.0.1", description="stub", author="tests",
            required_config=(f"{name}_token",),
        )
        super().__init__()
        self.journal = journal
        self.fail_init, self.fail_shutdown = fail_init, fail_shutdown

    async def _initialize(self, config: Config) -> None:
        if self.fail_init:
            raise ConnectionError(f"{self.name} unreachable")
        self.journal.append(f"init:{self.name}")

    def _tools(self) -> list[Tool]:
        return [MockTool(f"{self.name}_ping", return_value=f"{self.name} pong")]

    async def _shutdown(self) -> None:
        self.journal.append(f"shutdown:{self.name}")
        if self.fail_shutdown:
            raise RuntimeError("shutdown hook failed")


class StubFactory:
    def __init__(self, name: str, journal: list[str], **flags: bool) -> None:
        self.name, self.journal, self.flags = name, journal, flags

    def create_provider(self) -> StubProvider:
        return StubProvider(self.name, self.journal, **self.flags)

    def get_metadata(self) -> ProviderMetadata:
        return StubProvider(self.name, []).metadata

    def validate_config(self, config: Config) -> None:
        StubProvider(self.name, []).validate_config(config)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: object) -> Iterator[None]:
    """No ambient settings variables and no stray ``.env`` file."""
    for var in SETTINGS_ENV:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)  # type: ignore[arg-type]
    clear_settings_cache()
    yield
    clear_settings_cache()


def make_settings(**overrides: object) -> ServerSettings:
    return ServerSettings(_env_file=None, **{"log_format": "none", **overrides})  # type: ignore[arg-type]


def make_server(journal: list[str], providers: str = "alpha,beta", environ: dict[str, str] | None = None,
                logs: MemoryRenderer | None = None, **flags: dict[str, bool]) -> tuple[CloudMCPServer, RecordingTransport]:
    registry = ProviderRegistry()
    for name in ("alpha", "beta"):
        registry.register(name, StubFactory(name, journal, **flags.get(name, {})))
    transport = RecordingTransport()
    env = {"CLOUD_MCP_ALPHA_TOKEN": "a", "CLOUD_MCP_BETA_TOKEN": "b"} if environ is None else environ
    server = CloudMCPServer(make_settings(providers=providers), registry, transport, environ=env)
    if logs is not None:
        set_renderer(logs)
    return server, transport


# ═════════════════════════════════════════════════════════════════════════════
# Settings
# ═════════════════════════════════════════════════════════════════════════════


def test_settings_defaults() -> None:
    settings = ServerSettings(_env_file=None)  # type: ignore[call-arg]

    assert settings.server_name == "CloudMCP"
    assert (settings.log_level, settings.log_format) == ("INFO", "console")
    assert (settings.enable_metrics, settings.metrics_port) == (False, 8080)
    assert settings.environment == "default" and not settings.is_production
    assert settings.provider_names == []
    assert settings.enable_migration


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVER_NAME", "Edge")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("ENABLE_METRICS", "true")
    monkeypatch.setenv("METRICS_PORT", "9090")
    monkeypatch.setenv("CLOUD_MCP_ENVIRONMENT", "Production")
    monkeypatch.setenv("CLOUD_MCP_PROVIDERS", "Linode, linode,,aws ")

    settings = get_settings()

    assert settings.server_name == "Edge"
    assert settings.log_level == "DEBUG"
    assert settings.enable_metrics and settings.metrics_port == 9090
    assert settings.is_production
    assert settings.provider_names == ["linode", "aws"]
    assert get_settings() is settings


def test_prefixed_name_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLOUD_MCP_SERVER_NAME", "Prefixed")
    monkeypatch.setenv("SERVER_NAME", "Bare")
    assert ServerSettings(_env_file=None).server_name == "Prefixed"  # type: ignore[call-arg]


@pytest.mark.parametrize("field,value", [("metrics_port", 0), ("metrics_port", 70000), ("log_format", "xml"),
                                         ("environment", "staging"), ("log_level", "chatty")])
def test_invalid_settings(field: str, value: object) -> None:
    with pytest.raises(ValidationError):
        make_settings(**{field: value})


# ═════════════════════════════════════════════════════════════════════════════
# Assembly
# ═════════════════════════════════════════════════════════════════════════════


def test_server_registers_builtins_and_default_preset() -> None:
    server, transport = make_server([], providers="")

    assert {"health_check", "hello", "version"} <= set(transport.definitions)
    assert server.manager.count() == 11
    assert server.router is not None and len(server.router.tool_names()) == 56
    assert not isinstance(server.collector, PrometheusMetricsCollector)


def test_server_follows_environment_and_switches() -> None:
    server = CloudMCPServer(
        make_settings(environment="production", enable_metrics=True, enable_migration=False),
        ProviderRegistry(), RecordingTransport(), environ={},
    )

    assert [m.name for m in server.manager.list()][:4] == [
        "recovery", "security_logging", "logging", "structured_logging"]
    assert server.manager.get("rate_limit").config["key_strategy"] == "per_user_provider"  # type: ignore[union-attr]
    assert server.manager.count() == 11
    assert isinstance(server.collector, PrometheusMetricsCollector)
    assert server.router is None


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_start_without_providers_serves_builtins_and_warns(logs: MemoryRenderer) -> None:
    journal: list[str] = []
    server, transport = make_server(journal, providers="", logs=logs)

    await server.start()

    assert journal == [] and server.active == []
    warning = logs.find("no providers enabled, serving built-in tools only")[0]
    assert warning.level == "warning"
    assert warning.context["available"] == ["alpha", "beta"]
    assert set(transport.definitions) == {"health_check", "hello", "version"}


@pytest.mark.asyncio
async def test_start_initializes_providers_in_order(logs: MemoryRenderer) -> None:
    journal: list[str] = []
    server, transport = make_server(journal, logs=logs)

    await server.start()

    assert journal == ["init:alpha", "init:beta"]
    assert [p.name for p in server.active] == ["alpha", "beta"]
    assert (await transport.call("beta_ping")).first_text == "beta pong"
    assert len(logs.find("provider ready")) == 2

    health = orjson.loads((await transport.call("health_check")).first_text)
    assert health["providers"] == {"registered": 2, "available": ["alpha", "beta"]}
    assert "alpha_ping" in health["availableServices"]["toolNames"]

    await server.shutdown()
    assert journal[2:] == ["shutdown:beta", "shutdown:alpha"]
    assert server.active == []


@pytest.mark.asyncio
async def test_shutdown_failure_does_not_stop_the_others(logs: MemoryRenderer) -> None:
    journal: list[str] = []
    server, _ = make_server(journal, logs=logs, beta={"fail_shutdown": True})
    await server.start()

    await server.shutdown()

    assert journal[2:] == ["shutdown:beta", "shutdown:alpha"]
    failure = logs.find("provider shutdown failed")[0]
    assert failure.context["provider"] == "beta"
    assert failure.level == "error"


@pytest.mark.asyncio
async def test_missing_provider_config_is_a_config_error() -> None:
    journal: list[str] = []
    server, _ = make_server(journal, environ={"CLOUD_MCP_ALPHA_TOKEN": "a"})

    with pytest.raises(ConfigMissingKeysError) as exc_info:
        await server.start()

    assert exc_info.value.keys == ["beta_token"]
    assert exit_code_for(exc_info.value) == EXIT_CONFIG
    assert journal == ["init:alpha"]


@pytest.mark.asyncio
async def test_unknown_provider_is_a_config_error() -> None:
    server, _ = make_server([], providers="aws")

    with pytest.raises(ProviderNotRegisteredError) as exc_info:
        await server.start()
    assert exit_code_for(exc_info.value) == EXIT_CONFIG


@pytest.mark.asyncio
async def test_run_serves_then_shuts_down() -> None:
    journal: list[str] = []
    server, transport = make_server(journal)

    await server.run()

    assert transport.served
    assert journal == ["init:alpha", "init:beta", "shutdown:beta", "shutdown:alpha"]


@pytest.mark.asyncio
async def test_failed_start_shuts_down_what_started() -> None:
    journal: list[str] = []
    server, transport = make_server(journal, beta={"fail_init": True})

    with pytest.raises(ConnectionError) as exc_info:
        await server.run()

    assert exit_code_for(exc_info.value) == EXIT_INIT
    assert not transport.served
    assert journal == ["init:alpha", "shutdown:alpha"]


# ═════════════════════════════════════════════════════════════════════════════
# Entry Point
# ═════════════════════════════════════════════════════════════════════════════


def test_exit_code_for_settings_errors() -> None:
    with pytest.raises(ValidationError) as exc_info:
        make_settings(metrics_port=0)
    assert exit_code_for(exc_info.value) == EXIT_CONFIG
    assert exit_code_for(RuntimeError("boom")) == EXIT_INIT


def test_main_rejects_invalid_settings(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("METRICS_PORT", "0")

    assert main() == EXIT_CONFIG
    assert "invalid configuration" in capsys.readouterr().err


@pytest.mark.parametrize("raised,expected", [
    (KeyboardInterrupt(), EXIT_OK),
    (ProviderNotRegisteredError("aws"), EXIT_CONFIG),
    (RuntimeError("port in use"), EXIT_INIT),
])
def test_main_exit_codes(monkeypatch: pytest.MonkeyPatch, raised: BaseException, expected: int) -> None:
    async def run(self: CloudMCPServer) -> None:
        raise raised

    monkeypatch.setenv("LOG_FORMAT", "none")
    monkeypatch.setattr(CloudMCPServer, "run", run)

    assert main() == expected


def test_main_returns_ok_after_clean_run(monkeypatch: pytest.MonkeyPatch) -> None:
    async def run(self: CloudMCPServer) -> None:
        await self.shutdown()

    monkeypatch.setenv("LOG_FORMAT", "none")
    monkeypatch.setattr(CloudMCPServer, "run", run)

    assert main() == EXIT_OK


# ═════════════════════════════════════════════════════════════════════════════
# Prometheus Export
# ═════════════════════════════════════════════════════════════════════════════


def test_prometheus_collector_exports_samples() -> None:
    collector = PrometheusMetricsCollector()

    collector.counter("tool.calls", tags={"tool": "hello", "status": "success"})
    collector.counter("tool.calls", tags={"tool": "hello", "status": "success"})
    collector.counter("tool.calls", tags={"tool": "hello"})
    collector.timing("tool.duration", 250, tags={"tool": "hello"})
    collector.gauge("breaker.state", 2)

    assert collector.get_sample_value("tool_calls_total", {"tool": "hello", "status": "success"}) == 2
    assert collector.get_sample_value("tool_calls_total", {"tool": "hello", "status": ""}) == 1
    assert collector.get_sample_value("tool_duration_seconds_sum", {"tool": "hello"}) == pytest.approx(0.25)
    assert collector.get_sample_value("tool_duration_seconds_count", {"tool": "hello"}) == 1
    assert collector.get_sample_value("breaker_state") == 2
