"""Resilience patterns for the Data API and CLOB adapters.

Provides:
- CircuitBreaker: stops hammering an endpoint that keeps failing
- RateLimiter: keeps wallet polling inside the feed's request budget
- categorize_error / with_retry: retry transient failures, surface fatal ones
"""

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from polycopy.config import Config
from polycopy.infra.logging_config import get_logger

logger = get_logger("resilience")


class CircuitState(Enum):
    CLOSED = "closed"  # requests pass through
    OPEN = "open"  # requests blocked
    HALF_OPEN = "half_open"  # probing for recovery


class CircuitOpenError(Exception):
    """Raised when a circuit breaker is blocking requests."""


@dataclass
class CircuitBreaker:
    """Circuit breaker around one remote endpoint.

    Usage:
        breaker = CircuitBreaker(name="data_api")

        if not breaker.allow_request():
            raise CircuitOpenError("data_api circuit is open")
        try:
            result = api_call()
            breaker.record_success()
        except Exception:
            breaker.record_failure()
            raise
    """

    name: str
    failure_threshold: int = field(
        default_factory=lambda: Config.CIRCUIT_BREAKER_THRESHOLD
    )
    recovery_time: float = field(
        default_factory=lambda: Config.CIRCUIT_BREAKER_RECOVERY_TIME
    )
    half_open_max_calls: int = 3
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: int = field(default=0, init=False)
    _half_open_successes: int = field(default=0, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    total_failures: int = field(default=0, init=False)
    total_blocked: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self):
        if (
            self._state == CircuitState.OPEN
            and self.clock() - self._opened_at >= self.recovery_time
        ):
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState):
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self.clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._half_open_successes = 0
        else:
            self._failures = 0
        logger.circuit_breaker(self.name, new_state.value, self._failures)

    def allow_request(self) -> bool:
        with self._lock:
            self._maybe_half_open()

            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and (
                self._half_open_calls < self.half_open_max_calls
            ):
                self._half_open_calls += 1
                return True

            self.total_blocked += 1
            return False

    def record_success(self):
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.half_open_max_calls:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failures = max(0, self._failures - 1)

    def record_failure(self):
        with self._lock:
            self._failures += 1
            self.total_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failures >= self.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

    def reset(self):
        with self._lock:
            self._transition_to(CircuitState.CLOSED)


@dataclass
class RateLimiter:
    """Sliding-window limiter: at most ``requests_per_minute`` calls per window."""

    requests_per_minute: int = field(default_factory=lambda: Config.FEED_RATE_BUDGET)
    window_size: float = 60.0
    clock: Callable[[], float] = time.monotonic

    _requests: deque = field(default_factory=deque, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    total_limited: int = field(default=0, init=False)

    def _prune(self, now: float):
        window_start = now - self.window_size
        while self._requests and self._requests[0] <= window_start:
            self._requests.popleft()

    def allow_request(self) -> bool:
        with self._lock:
            now = self.clock()
            self._prune(now)
            if len(self._requests) < self.requests_per_minute:
                self._requests.append(now)
                return True
            self.total_limited += 1
            return False

    def time_until_allowed(self) -> float:
        with self._lock:
            now = self.clock()
            self._prune(now)
            if len(self._requests) < self.requests_per_minute:
                return 0.0
            return max(0.0, self._requests[0] + self.window_size - now)

    def acquire(self, endpoint: str = "", sleep: Callable[[float], None] = time.sleep):
        """Block until a request slot is free."""
        while not self.allow_request():
            wait_time = self.time_until_allowed()
            logger.rate_limited(endpoint or "unknown", wait_time)
            sleep(min(max(wait_time, 0.05), 1.0))


class ErrorCategory(Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"
    RATE_LIMITED = "rate_limited"
    CIRCUIT_OPEN = "circuit_open"


def categorize_error(error: Exception) -> ErrorCategory:
    """Classify an exception by its message, the way API clients report them."""
    if isinstance(error, CircuitOpenError):
        return ErrorCategory.CIRCUIT_OPEN

    text = str(error).lower()

    if "429" in text or "rate limit" in text or "too many requests" in text:
        return ErrorCategory.RATE_LIMITED
    if any(code in text for code in ("500", "502", "503", "504")):
        return ErrorCategory.RETRYABLE
    if "timeout" in text or "timed out" in text:
        return ErrorCategory.RETRYABLE
    if "connection" in text and any(w in text for w in ("refused", "reset", "error")):
        return ErrorCategory.RETRYABLE
    if any(code in text for code in ("400", "401", "403", "404", "422")):
        return ErrorCategory.FATAL
    if "invalid" in text or "validation" in text:
        return ErrorCategory.FATAL
    if "insufficient" in text or "balance" in text or "allowance" in text:
        return ErrorCategory.FATAL

    return ErrorCategory.RETRYABLE


T = TypeVar("T")


def with_retry(
    fn: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    circuit_breaker: CircuitBreaker | None = None,
    rate_limiter: RateLimiter | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` with exponential backoff, honoring breaker and limiter.

    Fatal errors and an open circuit are raised immediately; anything else is
    retried up to ``max_retries`` times before the last error propagates.
    """
    attempt = 0
    while True:
        if rate_limiter:
            rate_limiter.acquire(sleep=sleep)

        if circuit_breaker and not circuit_breaker.allow_request():
            raise CircuitOpenError(f"Circuit '{circuit_breaker.name}' is open")

        try:
            result = fn()
        except Exception as e:
            if circuit_breaker:
                circuit_breaker.record_failure()

            category = categorize_error(e)
            if category in (ErrorCategory.FATAL, ErrorCategory.CIRCUIT_OPEN):
                raise
            if attempt >= max_retries:
                raise

            delay = min(base_delay * (2**attempt), max_delay)
            if category == ErrorCategory.RATE_LIMITED:
                delay = max(delay, 5.0)
            attempt += 1
            sleep(delay)
            continue

        if circuit_breaker:
            circuit_breaker.record_success()
        return result
