"""Retry engine building blocks: backoff strategies and retryability policy."""

from .backoff import Backoff, ConstantBackoff, ExponentialBackoff
from .policy import DEFAULT_POLICY, NEVER_RETRY_CODES, RETRYABLE_CODES, RetryPolicy

__all__ = [
    "Backoff", "ExponentialBackoff", "ConstantBackoff",
    "RetryPolicy", "DEFAULT_POLICY", "RETRYABLE_CODES", "NEVER_RETRY_CODES",
]
