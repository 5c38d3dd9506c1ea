"""Tests for resilience patterns (retry and circuit breaker)."""

import time
from unittest.mock import MagicMock

import pytest

from resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitState,
    get_circuit_breaker_registry,
)
from resilience.retry import RetryConfig, RetryExhausted, call_with_retry, sync_retry


class TestRetryConfig:
    """Tests for RetryConfig class."""

    def test_calculate_delay_exponential_backoff(self):
        """Delay should increase exponentially."""
        config = RetryConfig(base_delay=1.0, backoff_multiplier=2.0, jitter=0)
        assert config.calculate_delay(1) == 1.0
        assert config.calculate_delay(2) == 2.0
        assert config.calculate_delay(3) == 4.0

    def test_calculate_delay_respects_max(self):
        """Delay should be capped at max_delay."""
        config = RetryConfig(base_delay=10.0, backoff_multiplier=2.0, max_delay=15.0, jitter=0)
        assert config.calculate_delay(2) == 15.0

    def test_should_retry(self):
        config = RetryConfig(retryable_exceptions=(ConnectionError,), non_retryable_exceptions=(ValueError,))
        assert config.should_retry(ConnectionError()) is True
        assert config.should_retry(ValueError()) is False
        assert config.should_retry(KeyError()) is False

    def test_from_settings_with_overrides(self):
        from config.settings import ResilienceSettings

        config = RetryConfig.from_settings(ResilienceSettings(), max_attempts=7)
        assert config.max_attempts == 7


class TestCallWithRetry:
    """Tests for call_with_retry()."""

    def test_succeeds_after_failures(self):
        func = MagicMock(side_effect=[ConnectionError("down"), ConnectionError("down"), "ok"])
        func.__name__ = "fetch"
        on_retry = MagicMock()
        config = RetryConfig(max_attempts=3, base_delay=0, jitter=0, on_retry=on_retry)

        assert call_with_retry(func, config) == "ok"
        assert func.call_count == 3
        assert on_retry.call_count == 2

    def test_exhausted(self):
        func = MagicMock(side_effect=ConnectionError("down"))
        func.__name__ = "fetch"

        with pytest.raises(RetryExhausted) as exc_info:
            call_with_retry(func, RetryConfig(max_attempts=2, base_delay=0, jitter=0))
        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, ConnectionError)

    def test_non_retryable_raised_immediately(self):
        func = MagicMock(side_effect=ValueError("bad"))
        func.__name__ = "fetch"

        with pytest.raises(ValueError):
            call_with_retry(func, RetryConfig(max_attempts=3, retryable_exceptions=(ConnectionError,)))
        assert func.call_count == 1

    def test_decorator(self):
        attempts = []

        @sync_retry(max_attempts=2, base_delay=0, jitter=0)
        def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise ConnectionError("down")
            return "done"

        assert flaky() == "done"
        assert len(attempts) == 2


class TestCircuitBreaker:
    """Tests for CircuitBreaker class."""

    def _fail(self, breaker, count):
        for _ in range(count):
            with pytest.raises(RuntimeError):
                breaker.call(MagicMock(side_effect=RuntimeError("boom")))

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=2))
        self._fail(breaker, 2)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpen) as exc_info:
            breaker.call(lambda: "never")
        assert exc_info.value.circuit_name == "test"

    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=2))
        self._fail(breaker, 1)
        assert breaker.call(lambda: "ok") == "ok"
        self._fail(breaker, 1)

        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_timeout_then_closes(self):
        breaker = CircuitBreaker(
            "test", CircuitBreakerConfig(failure_threshold=1, success_threshold=1, timeout=0.05)
        )
        self._fail(breaker, 1)
        time.sleep(0.1)

        assert breaker.state == CircuitState.HALF_OPEN
        breaker.call(lambda: "ok")
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1, timeout=0.05))
        self._fail(breaker, 1)
        time.sleep(0.1)
        self._fail(breaker, 1)

        assert breaker.state == CircuitState.OPEN

    def test_excluded_exceptions_not_counted(self):
        breaker = CircuitBreaker(
            "test", CircuitBreakerConfig(failure_threshold=1, excluded_exceptions=(RuntimeError,))
        )
        self._fail(breaker, 3)
        assert breaker.state == CircuitState.CLOSED

    def test_reset_and_stats(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1))
        self._fail(breaker, 1)
        assert breaker.stats()["is_open"] is True

        breaker.reset()
        assert breaker.stats() == {"state": "closed", "failure_count": 0, "is_open": False}


class TestCircuitBreakerRegistry:
    """Tests for the process-wide registry."""

    def test_get_returns_same_breaker(self):
        registry = get_circuit_breaker_registry()
        assert registry.get("policyengine") is registry.get("policyengine")

    def test_reset_all(self):
        registry = get_circuit_breaker_registry()
        breaker = registry.get("flaky", CircuitBreakerConfig(failure_threshold=1))
        with pytest.raises(RuntimeError):
            breaker.call(MagicMock(side_effect=RuntimeError("boom")))

        registry.reset_all()
        assert registry.get_all_stats()["flaky"]["state"] == "closed"
