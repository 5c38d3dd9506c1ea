"""Retry with exponential backoff for blocking calls.

Used around the reference calculator client; harness workers are plain
threads, so only the synchronous form is provided.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
ExceptionTypes = Union[Type[Exception], Tuple[Type[Exception], ...]]


class RetryExhausted(Exception):
    """All attempts failed with a retryable exception."""

    def __init__(self, message: str, attempts: int, last_exception: Optional[Exception] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


@dataclass
class RetryConfig:
    """Retry behaviour.

    Attributes:
        max_attempts: Total attempts, including the first call.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound on any single delay.
        backoff_multiplier: Growth factor between delays.
        jitter: Random spread as a fraction of the delay (0-1).
        retryable_exceptions: Exceptions that trigger another attempt.
        non_retryable_exceptions: Exceptions re-raised immediately.
        on_retry: Called with (attempt, exception, delay) before sleeping.
    """
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.1
    retryable_exceptions: ExceptionTypes = (Exception,)
    non_retryable_exceptions: ExceptionTypes = ()
    on_retry: Optional[Callable[[int, Exception, float], None]] = None

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "RetryConfig":
        """Build from ResilienceSettings, with per-call overrides."""
        values = {
            "max_attempts": settings.retry_max_attempts,
            "base_delay": settings.retry_initial_delay,
            "max_delay": settings.retry_max_delay,
            "backoff_multiplier": settings.retry_backoff_multiplier,
        }
        values.update(overrides)
        return cls(**values)

    def calculate_delay(self, attempt: int) -> float:
        """Delay after the given (1-indexed) failed attempt."""
        delay = min(self.base_delay * (self.backoff_multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter > 0:
            spread = delay * self.jitter
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay

    def should_retry(self, exception: Exception) -> bool:
        if self.non_retryable_exceptions and isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)


def call_with_retry(func: Callable[..., T], config: RetryConfig, *args: Any, **kwargs: Any) -> T:
    """
    Call func until it succeeds or attempts run out.

    Raises:
        RetryExhausted: The last attempt failed with a retryable exception.
        Exception: Any non-retryable exception, unchanged.
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, config.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not config.should_retry(e):
                logger.debug(f"Non-retryable exception in {name}: {e}")
                raise

            if attempt >= config.max_attempts:
                logger.warning(f"Retry exhausted for {name} after {attempt} attempts: {e}")
                raise RetryExhausted(
                    f"Retry exhausted after {attempt} attempts",
                    attempts=attempt,
                    last_exception=e,
                ) from e

            delay = config.calculate_delay(attempt)
            logger.info(f"Retry {attempt}/{config.max_attempts} for {name} in {delay:.2f}s: {e}")
            if config.on_retry:
                config.on_retry(attempt, e, delay)
            time.sleep(delay)

    raise RetryExhausted(f"Retry exhausted after {config.max_attempts} attempts", attempts=config.max_attempts)


def sync_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    backoff_multiplier: float = 2.0,
    jitter: float = 0.1,
    retryable_exceptions: ExceptionTypes = (Exception,),
    non_retryable_exceptions: ExceptionTypes = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    config: Optional[RetryConfig] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator form of call_with_retry.

    Usage:
        @sync_retry(max_attempts=3, retryable_exceptions=(httpx.TimeoutException,))
        def fetch():
            ...
    """
    retry_config = config or RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        backoff_multiplier=backoff_multiplier,
        jitter=jitter,
        retryable_exceptions=retryable_exceptions,
        non_retryable_exceptions=non_retryable_exceptions,
        on_retry=on_retry,
    )

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return call_with_retry(func, retry_config, *args, **kwargs)
        return wrapper
    return decorator
