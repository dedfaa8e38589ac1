"""Error taxonomy for tool execution and server lifecycle.

Two families of errors exist:

- ``ToolException`` wraps a frozen ``ToolError`` model and travels through the
  middleware chain. Its ``code`` drives retry, breaker and rendering decisions.
- ``CloudMCPError`` subclasses describe registry, provider, config and
  migration failures that happen outside a single invocation.

Classification prefers structured codes and falls back to substring matching
on the message for errors raised by third-party code.

Example:
    >>> raise ToolException.create("linode_instances_list", "upstream 503", ErrorCode.RETRYABLE_TRANSPORT)
"""

from __future__ import annotations

import asyncio
import traceback
from enum import StrEnum
from functools import lru_cache
from typing import Annotated, ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ErrorCode(StrEnum):
    """Machine-readable error kinds surfaced by the core."""
    PARAM_VALIDATION = "PARAM_VALIDATION"
    RATE_LIMITED = "RATE_LIMITED"
    SYSTEM_LOAD_HIGH = "SYSTEM_LOAD_HIGH"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    RETRYABLE_TRANSPORT = "RETRYABLE_TRANSPORT"
    NON_RETRYABLE = "NON_RETRYABLE"
    PANIC = "PANIC"
    CANCELLED = "CANCELLED"
    NOT_INITIALIZED = "NOT_INITIALIZED"
    ALREADY_INITIALIZED = "ALREADY_INITIALIZED"
    CONFIG_MISSING_KEYS = "CONFIG_MISSING_KEYS"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    DUPLICATE_REGISTRATION = "DUPLICATE_REGISTRATION"
    PROVIDER_NOT_REGISTERED = "PROVIDER_NOT_REGISTERED"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    UNKNOWN = "UNKNOWN"


# ═══════════════════════════════════════════════════════════════════════════════
# Substring Classification
# ═══════════════════════════════════════════════════════════════════════════════

# Checked in order; non-retryable patterns win over retryable ones
NON_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "authentication", "unauthorized", "forbidden", "not found",
    "bad request", "validation", "invalid", "rate limit",
)
RETRYABLE_PATTERNS: tuple[str, ...] = (
    "timeout", "deadline", "network", "connection",
    "server error", "503", "502", "500",
)

# Metrics error categories, first match wins
_ERROR_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("timeout", ("timeout", "deadline", "context canceled")),
    ("auth", ("authentication", "unauthorized", "forbidden")),
    ("not_found", ("not found", "404")),
    ("rate_limit", ("rate limit", "too many requests", "429")),
    ("validation", ("validation", "invalid", "bad request", "400")),
    ("network", ("network", "connection", "dns")),
)


@lru_cache(maxsize=256)
def _classify_message(message: str) -> ErrorCode:
    haystack = message.lower()
    if any(p in haystack for p in NON_RETRYABLE_PATTERNS):
        return ErrorCode.NON_RETRYABLE
    if any(p in haystack for p in RETRYABLE_PATTERNS):
        return ErrorCode.RETRYABLE_TRANSPORT
    return ErrorCode.UNKNOWN


def classify_message(message: str) -> ErrorCode:
    """Classify a free-form error message as retryable, non-retryable or unknown."""
    return _classify_message(message)


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map an exception to an error code, structured information first."""
    match exc:
        case ToolException():
            return exc.code
        case CloudMCPError():
            return exc.code
        case asyncio.CancelledError():
            return ErrorCode.CANCELLED
        case TimeoutError() | ConnectionError():
            return ErrorCode.RETRYABLE_TRANSPORT
    return _classify_message(f"{type(exc).__name__} {exc}")


@lru_cache(maxsize=256)
def _categorize_message(message: str) -> str:
    haystack = message.lower()
    for category, patterns in _ERROR_CATEGORIES:
        if any(p in haystack for p in patterns):
            return category
    return "unknown"


def error_text(exc: BaseException) -> str:
    """Text to classify an error by: the message as raised, before enrichment."""
    if isinstance(exc, ToolException):
        return exc.error.raw_message
    return str(exc) or type(exc).__name__


def categorize_error(exc: BaseException) -> str:
    """Bucket an error for the ``tool.errors`` metric."""
    if isinstance(exc, asyncio.CancelledError):
        return "timeout"
    return _categorize_message(error_text(exc))


# ═══════════════════════════════════════════════════════════════════════════════
# Invocation Errors
# ═══════════════════════════════════════════════════════════════════════════════


class ToolError(BaseModel):
    """Structured error for a failed tool invocation.

    Attributes:
        tool_name: Name of the tool that failed
        message: Human-readable error message
        code: Machine-readable error kind
        recoverable: Whether a later retry might succeed
        details: Optional detail such as a captured stack trace
        request_id: Invocation id, set by enrichment and recovery
        provider: Provider identifier, set by enrichment
        wait_seconds: Wait hint for rate-limit errors
        attempts: Number of attempts made, set by the retry layer
        cause: Message as originally raised, kept when enrichment or retry
            rewrites ``message``
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        validate_default=True,
        json_schema_extra={
            "title": "Tool Error",
            "examples": [{
                "tool_name": "linode_instances_list",
                "message": "rate limit exceeded for tool \"linode_instances_list\", please wait 0.50s",
                "code": "RATE_LIMITED",
                "recoverable": True,
                "wait_seconds": 0.5,
            }],
        },
    )

    tool_name: Annotated[str, Field(min_length=1)]
    message: Annotated[str, Field(min_length=1)]
    code: ErrorCode = ErrorCode.UNKNOWN
    recoverable: bool = True
    details: str | None = Field(default=None, repr=False)
    request_id: str | None = None
    provider: str | None = None
    wait_seconds: float | None = Field(default=None, ge=0)
    attempts: int | None = Field(default=None, ge=1)
    cause: str | None = Field(default=None, repr=False)

    @field_validator("message", mode="before")
    @classmethod
    def _ensure_message(cls, v: str | BaseException) -> str:
        """Accept exception objects and extract the message."""
        return (str(v) or type(v).__name__) if isinstance(v, BaseException) else v

    @property
    def raw_message(self) -> str:
        return self.cause or self.message

    @computed_field
    @property
    def is_retryable(self) -> bool:
        return self.code is ErrorCode.RETRYABLE_TRANSPORT

    @classmethod
    def create(
        cls,
        tool_name: str,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        *,
        recoverable: bool = True,
        details: str | None = None,
        **extra: object,
    ) -> Self:
        """Factory method for construction."""
        return cls(tool_name=tool_name, message=message, code=code,
                   recoverable=recoverable, details=details, **extra)

    @classmethod
    def from_exception(cls, tool_name: str, exc: BaseException, context: str = "", *, include_trace: bool = False) -> Self:
        """Create from an arbitrary exception with auto-classification."""
        code = classify_exception(exc)
        return cls(
            tool_name=tool_name,
            message=f"{context}: {exc}" if context else exc,
            code=code,
            recoverable=code is ErrorCode.RETRYABLE_TRANSPORT,
            details=traceback.format_exc() if include_trace else None,
        )

    def with_message(self, message: str) -> ToolError:
        """Copy with a new message, keeping the code and the original cause."""
        return self.model_copy(update={"message": message, "cause": self.raw_message})

    def with_attempts(self, attempts: int, message: str) -> ToolError:
        return self.model_copy(update={"attempts": attempts, "message": message, "cause": self.raw_message})

    def render(self) -> str:
        """Format the error as text for an MCP error envelope."""
        parts = [f"[{self.code}] {self.message}"]
        if self.wait_seconds:
            parts.append(f" (retry after {self.wait_seconds:.2f}s)")
        return "".join(parts)

    __str__ = render


class ToolException(Exception):
    """Exception wrapping a ToolError for raising through the chain."""

    __slots__ = ("error",)

    def __init__(self, error: ToolError) -> None:
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @classmethod
    def create(
        cls,
        tool_name: str,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        *,
        recoverable: bool = True,
        **extra: object,
    ) -> Self:
        """Create tool exception."""
        return cls(ToolError.create(tool_name, message, code, recoverable=recoverable, **extra))

    @classmethod
    def from_exc(cls, tool_name: str, exc: BaseException, context: str = "") -> Self:
        """Fast path: create from exception without trace."""
        return cls(ToolError.from_exception(tool_name, exc, context))


# ═══════════════════════════════════════════════════════════════════════════════
# Lifecycle Errors
# ═══════════════════════════════════════════════════════════════════════════════


class CloudMCPError(Exception):
    """Base for registry, provider, configuration and migration errors."""

    code: ClassVar[ErrorCode] = ErrorCode.UNKNOWN


class DuplicateRegistrationError(CloudMCPError):
    code = ErrorCode.DUPLICATE_REGISTRATION

    def __init__(self, kind: str, name: str) -> None:
        self.kind, self.name = kind, name
        super().__init__(f"{kind} {name!r} is already registered")


class ToolNotFoundError(CloudMCPError):
    code = ErrorCode.TOOL_NOT_FOUND

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"tool {name!r} not found")


class ProviderNotInitializedError(CloudMCPError):
    code = ErrorCode.NOT_INITIALIZED

    def __init__(self, name: str = "") -> None:
        super().__init__(f"provider {name!r} is not initialized" if name else "provider is not initialized")


class ProviderAlreadyInitializedError(CloudMCPError):
    code = ErrorCode.ALREADY_INITIALIZED

    def __init__(self, name: str = "") -> None:
        super().__init__(f"provider {name!r} is already initialized" if name else "provider is already initialized")


class ConfigMissingKeysError(CloudMCPError):
    """Required configuration keys are absent."""

    code = ErrorCode.CONFIG_MISSING_KEYS

    def __init__(self, keys: list[str], reason: str = "missing required configuration keys") -> None:
        self.keys = list(keys)
        super().__init__(f"{reason}: {', '.join(self.keys)}")


class ProviderNotRegisteredError(CloudMCPError):
    code = ErrorCode.PROVIDER_NOT_REGISTERED

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"provider is not registered: {name!r}")


class ProviderRegistrationError(CloudMCPError):
    """Rejected factory registration or a factory that produced nothing."""

    code = ErrorCode.INVALID_ARGUMENT


class MigrationSettingsError(CloudMCPError):
    """Invalid migration settings update."""

    code = ErrorCode.INVALID_ARGUMENT


class MigrationToolNotFoundError(MigrationSettingsError):
    code = ErrorCode.TOOL_NOT_FOUND

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"tool not found in migration settings: {name}")
