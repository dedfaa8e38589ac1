"""Built-in middleware plugins.

Default priorities (outermost first): recovery 1, security 5, logging 10,
structured logging 15, metrics 20, usage 25, rate limit 30, adaptive rate
limit 35, retry 40, circuit breaker 45, error enrichment 50.
"""

from .breaker import CircuitBreaker, CircuitBreakerMiddleware, CircuitState, State
from .logging import (
    DEFAULT_SENSITIVE_OPERATIONS,
    LoggingMiddleware,
    SecurityLoggingMiddleware,
    StructuredLoggingMiddleware,
)
from .metrics import MetricsMiddleware, UsageMetricsMiddleware, performance_category
from .rate_limit import (
    AdaptiveRateLimitMiddleware,
    KeyStrategy,
    RateLimitMiddleware,
    load_band,
    rate_limit_key,
    system_load,
)
from .recovery import ErrorEnrichmentMiddleware, RecoveryMiddleware
from .retry import RetryMiddleware

__all__ = [
    # Resilience
    "RecoveryMiddleware", "ErrorEnrichmentMiddleware", "RetryMiddleware",
    "CircuitBreakerMiddleware", "CircuitBreaker", "CircuitState", "State",
    # Admission
    "RateLimitMiddleware", "AdaptiveRateLimitMiddleware", "KeyStrategy", "rate_limit_key", "load_band", "system_load",
    # Observability
    "SecurityLoggingMiddleware", "LoggingMiddleware", "StructuredLoggingMiddleware",
    "DEFAULT_SENSITIVE_OPERATIONS", "MetricsMiddleware", "UsageMetricsMiddleware", "performance_category",
]
