"""Middleware chain, built-in plugins and the manager presets."""

from .manager import MiddlewareManager, run_tool
from .middleware import Middleware, MiddlewareChain, Next, Priority, compose
from .plugins import (
    AdaptiveRateLimitMiddleware,
    CircuitBreaker,
    CircuitBreakerMiddleware,
    ErrorEnrichmentMiddleware,
    KeyStrategy,
    LoggingMiddleware,
    MetricsMiddleware,
    RateLimitMiddleware,
    RecoveryMiddleware,
    RetryMiddleware,
    SecurityLoggingMiddleware,
    State,
    StructuredLoggingMiddleware,
    UsageMetricsMiddleware,
)

__all__ = [
    "Middleware", "MiddlewareChain", "Next", "Priority", "compose", "MiddlewareManager", "run_tool",
    "RecoveryMiddleware", "ErrorEnrichmentMiddleware", "RetryMiddleware",
    "CircuitBreakerMiddleware", "CircuitBreaker", "State",
    "RateLimitMiddleware", "AdaptiveRateLimitMiddleware", "KeyStrategy",
    "SecurityLoggingMiddleware", "LoggingMiddleware", "StructuredLoggingMiddleware",
    "MetricsMiddleware", "UsageMetricsMiddleware",
]
