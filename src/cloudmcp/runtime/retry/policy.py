"""Retryability decisions.

Structured error codes decide first. Only errors without a usable code
(``UNKNOWN`` or a plain exception) fall back to matching the message against
known patterns, with non-retryable patterns checked before retryable ones.
Anything unmatched is not retried.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from cloudmcp.foundation.errors import CloudMCPError, ErrorCode, ToolException, classify_message, error_text

RETRYABLE_CODES: frozenset[ErrorCode] = frozenset({ErrorCode.RETRYABLE_TRANSPORT})

NEVER_RETRY_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.SYSTEM_LOAD_HIGH,
    ErrorCode.CIRCUIT_OPEN,
    ErrorCode.PARAM_VALIDATION,
    ErrorCode.NON_RETRYABLE,
    ErrorCode.PANIC,
    ErrorCode.CANCELLED,
    ErrorCode.TOOL_NOT_FOUND,
})


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Decides whether an exception is worth another attempt."""

    retryable_codes: frozenset[ErrorCode] = field(default=RETRYABLE_CODES)
    never_retry_codes: frozenset[ErrorCode] = field(default=NEVER_RETRY_CODES)

    def code_of(self, exc: BaseException) -> ErrorCode:
        """Effective code: structured when present, else classified from the message."""
        match exc:
            case ToolException() | CloudMCPError():
                code = exc.code
            case asyncio.CancelledError():
                return ErrorCode.CANCELLED
            case _:
                code = ErrorCode.UNKNOWN
        if code is not ErrorCode.UNKNOWN:
            return code
        if (by_message := classify_message(error_text(exc))) is not ErrorCode.UNKNOWN:
            return by_message
        if isinstance(exc, (TimeoutError, ConnectionError)):
            return ErrorCode.RETRYABLE_TRANSPORT
        return ErrorCode.UNKNOWN

    def is_retryable(self, exc: BaseException) -> bool:
        code = self.code_of(exc)
        return code not in self.never_retry_codes and code in self.retryable_codes


DEFAULT_POLICY = RetryPolicy()
