"""Resilience patterns: retry decisions, per-tenant backoff and circuit breaking.

This package provides:
- RetryPolicy, RetryDirective: ordered retry decision table with full-jitter backoff
- TenantRateLimiter: shared per-tenant backoff windows
- CircuitBreaker, CircuitBreakerRegistry: circuit breaker pattern
"""

from tinker_runtime.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from tinker_runtime.resilience.rate_limiter import (
    TenantRateLimiter,
    get_rate_limiter,
    reset_rate_limiter,
)
from tinker_runtime.resilience.retry import (
    NO_RETRY,
    RetryDirective,
    RetryPolicy,
    parse_retry_after_ms,
    should_retry_header,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "TenantRateLimiter",
    "get_rate_limiter",
    "reset_rate_limiter",
    "NO_RETRY",
    "RetryDirective",
    "RetryPolicy",
    "parse_retry_after_ms",
    "should_retry_header",
]
