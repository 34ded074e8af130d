"""
Retry with exponential backoff behind a process-wide circuit breaker.

The breaker is shared by every model and every request: five failures open
it, after the cooldown one trial call is let through (half-open) and two
successes close it again. While open, `retry_with_backoff` raises
`CircuitOpenError` before the attempt function runs.

How often a failure is retried depends on its class:

- network / timeout: always, until attempts run out
- api_limit: always, with backoff
- parsing: once
- unknown: once
- validation: never
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from .llm_client import LLMNetworkError, LLMRateLimitError, LLMTimeoutError
from .processing import ResponseParsingError, ResponseValidationError


T = TypeVar("T")

JITTER_RATIO = 0.25


class ErrorType(str, Enum):
    NETWORK = "network"
    PARSING = "parsing"
    API_LIMIT = "api_limit"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RetryError(RuntimeError):
    """Base class for failures surfaced by `RetryController`."""


class CircuitOpenError(RetryError):
    def __init__(self, message: str = "Circuit breaker is open - too many recent failures") -> None:
        super().__init__(message)


class RetryExhaustedError(RetryError):
    """All attempts failed (or the last failure was not retryable)."""

    def __init__(self, *, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"All {attempts} retry attempts failed. Last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


_NETWORK_KEYWORDS = ("network", "timeout", "timed out", "connection")
_PARSING_KEYWORDS = ("json", "parse", "syntax")
_API_LIMIT_KEYWORDS = ("quota", "limit", "rate", "429")
_VALIDATION_KEYWORDS = ("validation", "schema", "required")


def classify_error(error: BaseException) -> ErrorType:
    """Map an exception to a retry class: by type first, then by message."""
    if isinstance(error, LLMRateLimitError):
        return ErrorType.API_LIMIT
    if isinstance(error, (LLMTimeoutError, LLMNetworkError, TimeoutError, ConnectionError)):
        return ErrorType.NETWORK
    if isinstance(error, ResponseParsingError):
        return ErrorType.PARSING
    if isinstance(error, ResponseValidationError):
        return ErrorType.VALIDATION

    message = str(error).lower()
    if any(word in message for word in _NETWORK_KEYWORDS):
        return ErrorType.NETWORK
    if any(word in message for word in _PARSING_KEYWORDS):
        return ErrorType.PARSING
    if any(word in message for word in _API_LIMIT_KEYWORDS):
        return ErrorType.API_LIMIT
    if any(word in message for word in _VALIDATION_KEYWORDS):
        return ErrorType.VALIDATION
    return ErrorType.UNKNOWN


def should_retry(error: BaseException, attempt: int, max_attempts: int) -> bool:
    if attempt >= max_attempts:
        return False
    error_type = classify_error(error)
    if error_type in (ErrorType.NETWORK, ErrorType.API_LIMIT):
        return True
    if error_type in (ErrorType.PARSING, ErrorType.UNKNOWN):
        return attempt < 2
    return False


@dataclass(slots=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0
    backoff_multiplier: float = 1.5
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


def calculate_delay(attempt: int, config: RetryConfig, rng: random.Random | None = None) -> float:
    """Backoff in seconds before the attempt after `attempt`."""
    delay = min(config.max_delay, config.base_delay * config.backoff_multiplier ** (attempt - 1))
    if not config.jitter:
        return delay
    spread = delay * JITTER_RATIO
    uniform = (rng or random).uniform(-spread, spread)
    return max(0.0, delay + uniform)


# ---------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class CircuitBreakerState:
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: float | None

    def as_dict(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "failureCount": self.failure_count,
            "successCount": self.success_count,
            "lastFailureTime": self.last_failure_time,
        }


class CircuitBreaker:
    """Thread-safe closed/open/half-open breaker with an injectable clock."""

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self._clock = clock
        self.logger = logger or logging.getLogger("challenge_curator.retry")
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def is_open(self) -> bool:
        """True while calls would be rejected; does not move to half-open."""
        with self._lock:
            return self._state is CircuitState.OPEN and not self._cooldown_elapsed()

    def _cooldown_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time >= self.recovery_timeout

    def allow_request(self) -> bool:
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return True
            if not self._cooldown_elapsed():
                return False
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0
            self.logger.info("circuit_half_open", extra={"failure_count": self._failure_count})
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
                    self._last_failure_time = None
                    self.logger.info("circuit_closed")
            elif self._state is CircuitState.CLOSED:
                self._failure_count = max(0, self._failure_count - 1)

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._success_count = 0
                self.logger.warning("circuit_reopened", extra={"failure_count": self._failure_count})
            elif self._state is CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self.logger.warning("circuit_opened", extra={"failure_count": self._failure_count})

    def status(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_time=self._last_failure_time,
            )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None


# ---------------------------------------------------------------------
# Retry controller
# ---------------------------------------------------------------------


class RetryController:
    """Runs an attempt function under the shared breaker with backoff."""

    def __init__(
        self,
        *,
        breaker: CircuitBreaker | None = None,
        default_config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.breaker = breaker or CircuitBreaker()
        self.default_config = default_config or RetryConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.logger = logger or logging.getLogger("challenge_curator.retry")

    def retry_with_backoff(self, attempt_fn: Callable[[int], T], config: RetryConfig | None = None) -> T:
        """Call `attempt_fn(attempt)` until it succeeds or retries run out.

        Raises `CircuitOpenError` when the breaker rejects an attempt and
        `RetryExhaustedError` (carrying the last failure) otherwise.
        """
        config = config or self.default_config
        last_error: BaseException | None = None

        for attempt in range(1, config.max_attempts + 1):
            if not self.breaker.allow_request():
                raise CircuitOpenError()

            try:
                result = attempt_fn(attempt)
            except Exception as err:
                last_error = err
                self.breaker.record_failure()
                if not should_retry(err, attempt, config.max_attempts):
                    break
                delay = calculate_delay(attempt, config, self._rng)
                self.logger.info(
                    "retry_scheduled",
                    extra={
                        "attempt": attempt,
                        "max_attempts": config.max_attempts,
                        "error_type": classify_error(err).value,
                        "error": str(err),
                        "delay_seconds": round(delay, 3),
                    },
                )
                self._sleep(delay)
                continue

            self.breaker.record_success()
            return result

        assert last_error is not None
        raise RetryExhaustedError(attempts=attempt, last_error=last_error)
