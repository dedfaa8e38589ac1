"""Retry middleware for tool execution.

Retries failures the ``RetryPolicy`` considers transient, waiting an
exponential backoff between attempts. The wait is an ``asyncio.sleep``, so
cancelling the invocation interrupts it immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cloudmcp.foundation.errors import CloudMCPError, ErrorCode, JsonDict, ToolError, ToolException
from cloudmcp.runtime.middleware.middleware import Next, Priority
from cloudmcp.runtime.retry import DEFAULT_POLICY, Backoff, ExponentialBackoff, RetryPolicy

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext
    from cloudmcp.foundation.core import Tool

logger = logging.getLogger("cloudmcp.middleware")


@dataclass(slots=True)
class RetryMiddleware:
    """Retry transient failures with capped exponential backoff.

    Makes up to ``max_retries + 1`` attempts. Records the attempt count in
    ``ctx["retry_attempts"]`` and a per-attempt history in
    ``ctx["retry_history"]``.

    On giving up, taxonomy errors and retryable plain exceptions are raised as
    ``ToolException`` with ``tool execution failed after N attempts: <cause>``,
    keeping the cause's code. Plain exceptions the policy does not recognise
    are re-raised unchanged so recovery can still treat them as panics.

    Args:
        max_retries: Retries after the first attempt (default: 3)
        base_delay: Delay before the first retry in seconds (default: 1.0)
        max_delay: Delay cap in seconds (default: 30.0)
        backoff_factor: Growth per attempt (default: 2.0)
        policy: Retryability policy

    Example:
        >>> chain.add(RetryMiddleware(max_retries=2, base_delay=0.01))
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    policy: RetryPolicy = field(default_factory=lambda: DEFAULT_POLICY)
    name: str = "retry"
    priority: int = Priority.RETRY
    enabled: bool = True
    backoff: Backoff = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        self.backoff = ExponentialBackoff(self.base_delay, self.max_delay, self.backoff_factor)

    @property
    def config(self) -> JsonDict:
        return {"max_retries": self.max_retries, "base_delay": self.base_delay,
                "max_delay": self.max_delay, "backoff_factor": self.backoff_factor}

    async def __call__(self, tool: Tool, params: JsonDict, ctx: ExecutionContext, next: Next) -> object:
        history: list[JsonDict] = []
        ctx["retry_history"] = history

        for attempt in range(self.max_retries + 1):
            ctx["retry_attempts"] = attempt + 1
            try:
                return await next(tool, params, ctx)
            except Exception as e:
                code = self.policy.code_of(e)
                retryable = self.policy.is_retryable(e)
                history.append({"attempt": attempt + 1, "error_code": str(code),
                                "message": str(e), "retryable": retryable})

                if not retryable or attempt == self.max_retries:
                    if (final := self._give_up(tool, e, attempt + 1, retryable)) is e:
                        raise
                    raise final from e

                delay = self.backoff.delay(attempt)
                logger.warning(
                    f"[{tool.name}] Attempt {attempt + 1} failed ({code}): {e}. Retrying in {delay:.2f}s"
                )
                try:
                    await asyncio.sleep(delay)
                except asyncio.CancelledError:
                    logger.info(f"[{tool.name}] context cancelled during retry delay (attempt {attempt + 1})")
                    raise
        raise AssertionError("unreachable")  # pragma: no cover

    def _give_up(self, tool: Tool, exc: Exception, attempts: int, retryable: bool) -> Exception:
        message = f"tool execution failed after {attempts} attempts: {exc}"
        match exc:
            case ToolException():
                return ToolException(exc.error.with_attempts(attempts, message))
            case CloudMCPError():
                return ToolException(ToolError.create(tool.name, message, exc.code, recoverable=False,
                                                      attempts=attempts, cause=str(exc)))
            case _ if retryable:
                return ToolException(ToolError.create(tool.name, message, ErrorCode.RETRYABLE_TRANSPORT,
                                                      attempts=attempts, cause=str(exc)))
        return exc
