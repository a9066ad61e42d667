"""Resilience utilities for the assisted analysis call.

- Circuit Breaker: stops hammering a collaborator that keeps failing
- Retry Logic: handles transient errors
"""

from hybrid_idp.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from hybrid_idp.resilience.retry import retry_with_backoff, RetryConfig

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "retry_with_backoff",
    "RetryConfig",
]
