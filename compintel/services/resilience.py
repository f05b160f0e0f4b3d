"""
Resilience utilities for remote calls: rate limiting, circuit breaking and
jittered retries.

Usage:
    limiter = RateLimiter()
    breaker = CircuitBreaker("edge:competitor-analysis", failure_threshold=3, cooldown=15.0)

    limiter.acquire("edge:competitor-analysis", limit=5, interval=10.0)
    result = breaker.call(
        retry_with_jitter, invoke_function, retries=2, base_delay=0.2, max_delay=1.5
    )
"""

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional, Tuple, Type, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ..core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# Retry with jitter
# ============================================================================

def retry_with_jitter(
    func: Callable[[], T],
    retries: int = 2,
    base_delay: float = 0.15,
    max_delay: float = 1.2,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    no_retry_on: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func, retrying failures with exponential backoff plus random jitter.

    Delays start around base_delay, double per attempt and never exceed
    max_delay. The last exception is re-raised once retries are exhausted.

    Args:
        func: Zero-argument callable to run
        retries: Number of retries after the first attempt
        base_delay: Initial delay in seconds (also the jitter range)
        max_delay: Upper bound for a single delay in seconds
        retry_on: Exception types that trigger a retry
        no_retry_on: Exception types raised immediately even if they match retry_on
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever func returns
    """
    retryer = Retrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential_jitter(initial=base_delay, max=max_delay, jitter=base_delay),
        retry=retry_if_exception_type(retry_on) & retry_if_not_exception_type(no_retry_on),
        reraise=True,
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    return retryer(func)


# ============================================================================
# Rate limiting
# ============================================================================

class RateLimiter:
    """
    Sliding-window rate limiter keyed by operation name.

    acquire() blocks until a slot is free in the window; try_acquire() never
    blocks.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._calls: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: str, interval: float, now: float) -> Deque[float]:
        calls = self._calls.setdefault(key, deque())
        while calls and now - calls[0] >= interval:
            calls.popleft()
        return calls

    def try_acquire(self, key: str, limit: int, interval: float) -> bool:
        """Take a slot for key if one is free. Returns False otherwise."""
        with self._lock:
            now = self._clock()
            calls = self._prune(key, interval, now)
            if len(calls) >= limit:
                return False
            calls.append(now)
            return True

    def acquire(self, key: str, limit: int, interval: float) -> float:
        """
        Take a slot for key, waiting for the window to free one if needed.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                calls = self._prune(key, interval, now)
                if len(calls) < limit:
                    calls.append(now)
                    return waited
                delay = interval - (now - calls[0])

            logger.warning(f"Rate limit reached for {key} ({limit}/{interval:g}s), waiting {delay:.2f}s")
            self._sleep(delay)
            waited += delay

    def usage(self, key: str, interval: float) -> int:
        """Number of slots taken for key within the current window."""
        with self._lock:
            return len(self._prune(key, interval, self._clock()))

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._calls.clear()
            else:
                self._calls.pop(key, None)


# ============================================================================
# Circuit breaker
# ============================================================================

class CircuitState(str, Enum):
    """Finite state machine for a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Stops calling a failing dependency for a cooldown period.

    Opens after failure_threshold consecutive failures. After cooldown seconds
    one trial call is let through (half-open): success closes the circuit,
    failure opens it again.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        cooldown: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock

        self.state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def retry_after(self) -> float:
        """Seconds left in the cooldown (0 when not open)."""
        if self.state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.cooldown - (self._clock() - self._opened_at))

    def allows_request(self) -> bool:
        """
        Determine whether a call is permitted right now.

        While half-open only the first caller gets through; everyone else is
        refused until that trial call is recorded as a success or failure.
        """
        with self._lock:
            if self.state == CircuitState.OPEN:
                if self._opened_at is not None and self._clock() - self._opened_at >= self.cooldown:
                    self.state = CircuitState.HALF_OPEN
                    logger.info(f"Circuit {self.name} half-open, allowing a trial call")
                    return True
                return False
            if self.state == CircuitState.HALF_OPEN:
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            if self.state != CircuitState.CLOSED:
                logger.info(f"Circuit {self.name} closed")
            self.state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self._open()
                return
            self._consecutive_failures += 1
            if self._consecutive_failures >= self.failure_threshold:
                self._open()

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._consecutive_failures = 0
        logger.warning(f"Circuit {self.name} opened for {self.cooldown:g}s")

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run func through the breaker.

        Raises:
            CircuitOpenError: If the circuit is open
        """
        if not self.allows_request():
            raise CircuitOpenError(self.name, self.retry_after())

        try:
            result = func(*args, **kwargs)
        except BaseException:
            self.record_failure()
            raise

        self.record_success()
        return result
