"""Circuit breaker for calls to external collaborators.

States:
- CLOSED: calls pass through; consecutive failures are counted
- OPEN: calls are rejected until the recovery timeout elapses
- HALF_OPEN: trial calls decide whether to close or re-open
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
ExceptionTypes = Union[Type[Exception], Tuple[Type[Exception], ...]]


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised instead of calling through while the circuit is open."""

    def __init__(self, message: str, circuit_name: str, time_remaining: float):
        super().__init__(message)
        self.circuit_name = circuit_name
        self.time_remaining = time_remaining


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker thresholds.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        success_threshold: Half-open successes that close it again.
        timeout: Seconds the circuit stays open before a trial call.
        failure_exceptions: Exceptions counted as failures.
        excluded_exceptions: Exceptions passed through without counting.
    """
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: float = 30.0
    failure_exceptions: ExceptionTypes = (Exception,)
    excluded_exceptions: ExceptionTypes = ()

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "CircuitBreakerConfig":
        """Build from ResilienceSettings."""
        values = {
            "failure_threshold": settings.circuit_failure_threshold,
            "success_threshold": settings.circuit_half_open_requests,
            "timeout": float(settings.circuit_recovery_timeout),
        }
        values.update(overrides)
        return cls(**values)


class CircuitBreaker:
    """
    Thread-safe circuit breaker.

    Usage:
        breaker = CircuitBreaker("policyengine")
        result = breaker.call(client.post, url, json=payload)
    """

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._lock = Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _current_state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.config.timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                logger.info(f"Circuit breaker '{self.name}' HALF-OPEN")
        return self._state

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        logger.warning(f"Circuit breaker '{self.name}' OPENED after {self._failure_count} failures")

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        logger.info(f"Circuit breaker '{self.name}' CLOSED")

    def allow_request(self) -> None:
        """
        Raises:
            CircuitBreakerOpen: The circuit is open.
        """
        with self._lock:
            if self._current_state() != CircuitState.OPEN:
                return
            remaining = max(0.0, self.config.timeout - (time.monotonic() - (self._opened_at or 0.0)))
        raise CircuitBreakerOpen(
            f"Circuit breaker '{self.name}' is open",
            circuit_name=self.name,
            time_remaining=remaining,
        )

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._close()
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self, exception: Exception) -> None:
        if self.config.excluded_exceptions and isinstance(exception, self.config.excluded_exceptions):
            return
        if not isinstance(exception, self.config.failure_exceptions):
            return
        with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._open()

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke func through the breaker."""
        self.allow_request()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._close()

    def stats(self) -> Dict[str, Any]:
        state = self.state
        return {
            "state": state.value,
            "failure_count": self._failure_count,
            "is_open": state == CircuitState.OPEN,
        }


class CircuitBreakerRegistry:
    """Named circuit breakers shared across the process."""

    def __init__(self, default_config: Optional[CircuitBreakerConfig] = None):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._lock = Lock()

    def get(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Get or create a circuit breaker."""
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(name=name, config=config or self._default_config)
            return self._breakers[name]

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.stats() for name, breaker in breakers.items()}


# Global registry instance
_registry: Optional[CircuitBreakerRegistry] = None


def get_circuit_breaker_registry() -> CircuitBreakerRegistry:
    """Get the global circuit breaker registry."""
    global _registry
    if _registry is None:
        _registry = CircuitBreakerRegistry()
    return _registry
