"""Structured logging for the server and the tool pipeline.

A log call builds a ``LogEntry`` (timestamp, level, event, fields) and hands it
to the active renderer. Fields come from three layers, later ones winning:

1. the ambient ``log_context`` scope (the front opens one per tool call)
2. fields bound on the logger (``bind`` / ``for_call``)
3. keyword arguments at the call site

stdout is the MCP channel, so every renderer writes to stderr unless told
otherwise.

Quick Start:
    >>> from cloudmcp.runtime.observability import configure_logging, get_logger
    >>> configure_logging(format="json", level="DEBUG")
    >>> log = get_logger("cloudmcp.server")
    >>> log.info("provider ready", provider="linode", tools=10)

    >>> with log_context(request_id="req_1a2b"):
    ...     log.for_call(ctx).info("tool execution started")
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
import traceback
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import wraps
from typing import TYPE_CHECKING, Callable, ParamSpec, Protocol, TextIO, TypeVar, runtime_checkable

import orjson

from cloudmcp.foundation.errors import JsonDict, JsonValue

if TYPE_CHECKING:
    from types import TracebackType

    from cloudmcp.foundation.context import ExecutionContext

P = ParamSpec("P")
T = TypeVar("T")

_scope: ContextVar[JsonDict] = ContextVar("cloudmcp_log_scope", default={})

# Set once at startup by configure_logging and read on every call, so loggers
# created at import time follow later configuration. Tasks spawned by the
# transport must see it too, which rules out a ContextVar here.
_state: dict[str, object] = {"renderer": None, "level": logging.INFO}


@dataclass(slots=True)
class LogEntry:
    timestamp: float
    level: str
    event: str
    context: JsonDict

    @property
    def iso_time(self) -> str:
        return datetime.fromtimestamp(self.timestamp, tz=UTC).isoformat()

    @property
    def clock_time(self) -> str:
        """HH:MM:SS.mmm in UTC."""
        return datetime.fromtimestamp(self.timestamp, tz=UTC).strftime("%H:%M:%S.%f")[:-3]


# ─────────────────────────────────────────────────────────────────────────────
# Logger
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class BoundLogger:
    """Logger carrying a fixed set of fields.

    ``bind`` and ``for_call`` return new loggers; the original is never
    mutated, so middleware can keep one logger and derive per-call views.

    Example:
        >>> log = BoundLogger(context={"logger": "cloudmcp.registry"})
        >>> log.info("tool registered", tool="hello")
        # => 10:30:45.120 [info] tool registered logger="cloudmcp.registry" tool="hello"
    """

    context: JsonDict = field(default_factory=dict)
    renderer: LogRenderer | None = None

    def bind(self, **fields: JsonValue) -> BoundLogger:
        return BoundLogger(context={**self.context, **fields}, renderer=self.renderer)

    def for_call(self, ctx: ExecutionContext) -> BoundLogger:
        """Bind the identity of one tool invocation."""
        return self.bind(tool=ctx.tool_name, request_id=ctx.request_id, provider=ctx.provider)

    def enabled_for(self, level: int) -> bool:
        return level >= _state["level"]  # type: ignore[operator]

    def log(self, level: int, event: str, **fields: JsonValue) -> None:
        if not self.enabled_for(level):
            return
        entry = LogEntry(time.time(), logging.getLevelName(level).lower(), event,
                         {**_scope.get(), **self.context, **fields})
        (self.renderer or _active_renderer()).render(entry)

    def debug(self, event: str, **fields: JsonValue) -> None:
        self.log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: JsonValue) -> None:
        self.log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: JsonValue) -> None:
        self.log(logging.WARNING, event, **fields)

    def error(self, event: str, **fields: JsonValue) -> None:
        self.log(logging.ERROR, event, **fields)

    def exception(self, event: str, **fields: JsonValue) -> None:
        """ERROR entry with the current traceback under ``exc_info``."""
        self.log(logging.ERROR, event, exc_info=traceback.format_exc(), **fields)


class log_context:
    """Add fields to every entry logged inside the block, across awaits.

    Example:
        >>> with log_context(request_id=ctx.request_id):
        ...     await chain(tool, params, ctx)
    """

    __slots__ = ("_fields", "_token")

    def __init__(self, **fields: JsonValue) -> None:
        self._fields: JsonDict = fields
        self._token: object | None = None

    def __enter__(self) -> log_context:
        self._token = _scope.set({**_scope.get(), **self._fields})
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None,
                 exc_tb: TracebackType | None) -> None:
        if self._token is not None:
            _scope.reset(self._token)  # type: ignore[arg-type]
            self._token = None


# ─────────────────────────────────────────────────────────────────────────────
# Renderers
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class LogRenderer(Protocol):
    def render(self, entry: LogEntry) -> None: ...


_ANSI = {"reset": "\033[0m", "dim": "\033[2m", "bold": "\033[1m", "key": "\033[36m",
         "debug": "\033[2m", "info": "\033[32m", "warning": "\033[33m", "error": "\033[31m"}
_PLAIN = dict.fromkeys(_ANSI, "")


@dataclass(slots=True)
class ConsoleRenderer:
    """One human-readable line per entry: ``time [level] event key=value ...``."""

    output: TextIO = field(default_factory=lambda: sys.stderr)
    colors: bool | None = None  # None: color only when output is a tty

    def __post_init__(self) -> None:
        if self.colors is None:
            self.colors = bool(getattr(self.output, "isatty", lambda: False)())

    def render(self, entry: LogEntry) -> None:
        c = _ANSI if self.colors else _PLAIN
        trace = entry.context.get("exc_info")
        pairs = " ".join(f"{c['key']}{k}{c['reset']}={_show(v)}"
                         for k, v in sorted(entry.context.items()) if k != "exc_info")
        line = (f"{c['dim']}{entry.clock_time}{c['reset']} {c.get(entry.level, '')}[{entry.level}]{c['reset']} "
                f"{c['bold']}{entry.event}{c['reset']}")
        print(f"{line} {pairs}" if pairs else line, file=self.output)
        if trace:
            print(trace, file=self.output)


@dataclass(slots=True)
class JsonRenderer:
    """JSON Lines for log aggregation; unknown values fall back to ``str``."""

    output: TextIO = field(default_factory=lambda: sys.stderr)

    def render(self, entry: LogEntry) -> None:
        record = {"timestamp": entry.iso_time, "level": entry.level, "event": entry.event, **entry.context}
        self.output.write(orjson.dumps(record, default=str, option=orjson.OPT_APPEND_NEWLINE).decode())
        self.output.flush()


@dataclass(slots=True)
class NoOpRenderer:
    def render(self, entry: LogEntry) -> None:
        return None


@dataclass(slots=True)
class MemoryRenderer:
    """Keeps entries in memory for assertions in tests."""

    entries: list[LogEntry] = field(default_factory=list)

    def render(self, entry: LogEntry) -> None:
        self.entries.append(entry)

    def events(self, level: str | None = None) -> list[str]:
        return [e.event for e in self.entries if level is None or e.level == level]

    def find(self, event: str) -> list[LogEntry]:
        return [e for e in self.entries if e.event == event]

    def clear(self) -> None:
        self.entries.clear()


def _show(value: object) -> str:
    match value:
        case str():
            return f'"{value}"'
        case bool():
            return "true" if value else "false"
        case dict() | list() | tuple():
            return orjson.dumps(value, default=str).decode()
        case None:
            return "null"
    return str(value)


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────


def configure_logging(
    format: str = "console",  # noqa: A002
    level: str = "INFO",
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
) -> LogRenderer:
    """Install the global renderer and level. ``format`` is console, json or none."""
    numeric = logging.getLevelName(level.upper())
    match format:
        case "console":
            renderer: LogRenderer = ConsoleRenderer(output=output or sys.stderr, colors=colors)
        case "json":
            renderer = JsonRenderer(output=output or sys.stderr)
        case "none":
            renderer = NoOpRenderer()
        case _:
            raise ValueError(f"unknown log format {format!r}: expected console, json or none")
    _state.update(renderer=renderer, level=numeric if isinstance(numeric, int) else logging.INFO)
    return renderer


def set_renderer(renderer: LogRenderer | None) -> None:
    """Install a renderer directly; ``None`` falls back to a console renderer on next use."""
    _state["renderer"] = renderer


def set_level(level: int) -> None:
    _state["level"] = level


def get_logger(name: str | None = None, **fields: JsonValue) -> BoundLogger:
    """Logger with ``fields`` bound, plus ``logger=name`` when a name is given."""
    return BoundLogger(context={**fields, "logger": name} if name else dict(fields))


def _active_renderer() -> LogRenderer:
    if (renderer := _state["renderer"]) is None:
        _state["renderer"] = renderer = ConsoleRenderer()
    return renderer  # type: ignore[return-value]


def timed(log: BoundLogger | None = None, *, event: str = "operation completed",
          level: int = logging.INFO) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Log how long the decorated function took; failures log ``<event> failed`` and re-raise."""

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        def report(start: float, error: BaseException | None) -> None:
            logger = log or get_logger()
            elapsed = round((time.perf_counter() - start) * 1000, 2)
            if error is None:
                logger.log(level, event, function=func.__qualname__, duration_ms=elapsed)
            else:
                logger.error(f"{event} failed", function=func.__qualname__, duration_ms=elapsed,
                             error=str(error) or type(error).__name__)

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)  # type: ignore[misc]
                except Exception as e:
                    report(start, e)
                    raise
                report(start, None)
                return result
            return async_wrapper  # type: ignore[return-value]

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(start, e)
                raise
            report(start, None)
            return result
        return wrapper

    return decorator
