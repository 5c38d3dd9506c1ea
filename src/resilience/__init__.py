"""Resilience patterns for calls to external collaborators.

Provides retry with exponential backoff and circuit breakers; used by
the reference calculator client.
"""

from .retry import (
    call_with_retry,
    sync_retry,
    RetryConfig,
    RetryExhausted,
)

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitBreakerRegistry,
    CircuitState,
    get_circuit_breaker_registry,
)

__all__ = [
    # Retry
    "call_with_retry",
    "sync_retry",
    "RetryConfig",
    "RetryExhausted",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpen",
    "CircuitBreakerRegistry",
    "CircuitState",
    "get_circuit_breaker_registry",
]
