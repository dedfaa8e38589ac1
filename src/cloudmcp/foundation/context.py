"""Per-invocation execution context.

One ``ExecutionContext`` is created for every tool call and carried through the
middleware chain both explicitly (as the ``ctx`` argument) and ambiently via a
ContextVar, so helpers deep inside a tool can reach it without plumbing.

Identity fields are read-only once created; assigning to one raises
``FrozenInstanceError``. Middleware share state through ``metadata``, which
belongs to a single invocation and stays mutable.

Example:
    >>> ctx = ExecutionContext.create("linode_instances_list", provider="linode")
    >>> with use_context(ctx):
    ...     current_context().request_id.startswith("req_")
    True
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime

from cloudmcp.foundation.errors import JsonDict

_current: ContextVar[ExecutionContext | None] = ContextVar("execution_context", default=None)


def new_request_id() -> str:
    """Unique invocation id."""
    return f"req_{uuid.uuid4().hex}"


@dataclass(frozen=True, slots=True, eq=False)
class ExecutionContext:
    """Request-scoped data for one tool invocation.

    Attributes:
        tool_name: Tool being invoked
        provider: Provider identifier ("linode", "unknown", ...)
        user_id: Caller identity when known
        request_id: Unique id for correlation across logs and metrics
        start_time: Wall-clock start, seconds since the epoch
        metadata: Free-form middleware state for this invocation only
    """

    tool_name: str
    provider: str = "unknown"
    user_id: str | None = None
    request_id: str = field(default_factory=new_request_id)
    start_time: float = field(default_factory=time.time)
    metadata: JsonDict = field(default_factory=dict)
    _started: float = field(default_factory=time.perf_counter, repr=False)

    @classmethod
    def create(cls, tool_name: str, *, provider: str | None = None, user_id: str | None = None,
               request_id: str | None = None, **metadata: object) -> ExecutionContext:
        """Build a context, inferring the provider from the tool name when absent."""
        return cls(tool_name=tool_name, provider=provider or infer_provider(tool_name), user_id=user_id,
                   request_id=request_id or new_request_id(), metadata=dict(metadata))

    def __getitem__(self, key: str) -> object:
        return self.metadata[key]

    def __setitem__(self, key: str, value: object) -> None:
        self.metadata[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.metadata

    def get(self, key: str, default: object = None) -> object:
        return self.metadata.get(key, default)

    @property
    def scope(self) -> str:
        """Identity used for scoping: user, then provider, then global."""
        if self.user_id:
            return f"user:{self.user_id}"
        if self.provider and self.provider != "unknown":
            return f"provider:{self.provider}"
        return "global"

    @property
    def started_at(self) -> datetime:
        return datetime.fromtimestamp(self.start_time, tz=UTC)

    def elapsed_ms(self) -> float:
        """Milliseconds since the invocation started."""
        return (time.perf_counter() - self._started) * 1000

    def log_fields(self) -> JsonDict:
        """Identity fields for structured log records."""
        return {"tool": self.tool_name, "request_id": self.request_id,
                "provider": self.provider, "user_id": self.user_id}


def infer_provider(tool_name: str) -> str:
    """Provider guess from a tool name prefix."""
    return "linode" if tool_name.startswith("linode") else "unknown"


def current_context() -> ExecutionContext | None:
    """The context of the invocation running in this task, if any."""
    return _current.get()


@contextmanager
def use_context(ctx: ExecutionContext) -> Iterator[ExecutionContext]:
    """Install ``ctx`` as the ambient context for the enclosed block."""
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)
