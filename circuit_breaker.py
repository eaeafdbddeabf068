"""
Proxy Circuit Breaker & Retry Policy
Keeps one blocked client identity from eating the request budget: a
tripped breaker fails fast so the resolver can move to the next variant.
"""
import asyncio
import logging
import random
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from curl_cffi.requests import RequestsError

from config import ProxyConfig
from errors import CircuitOpenError, UpstreamCallError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    CLOSED = "closed"        # calls flow
    OPEN = "open"            # calls rejected until the cool-down passes
    HALF_OPEN = "half_open"  # trial calls only


class CircuitBreaker:
    """
    Per-identity breaker. Opens after ``failure_threshold`` consecutive
    failures, lets trial calls through once ``recovery_timeout`` has passed and
    closes again after ``recovery_threshold`` successful trials.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = ProxyConfig.CIRCUIT_BREAKER_THRESHOLD,
        recovery_timeout: float = ProxyConfig.CIRCUIT_BREAKER_TIMEOUT,
        recovery_threshold: int = ProxyConfig.CIRCUIT_BREAKER_RECOVERY_THRESHOLD,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.recovery_threshold = recovery_threshold
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.trial_successes = 0
        self.trial_in_flight = False
        self.opened_at: Optional[float] = None

    @property
    def retry_at(self) -> Optional[float]:
        """Clock reading from which an open circuit admits a trial call"""
        if self.opened_at is None:
            return None
        return self.opened_at + self.recovery_timeout

    def record_success(self):
        self.trial_in_flight = False
        if self.state == CircuitState.HALF_OPEN:
            self.trial_successes += 1
            if self.trial_successes >= self.recovery_threshold:
                self._transition(CircuitState.CLOSED)
            return
        self.failure_count = 0

    def record_failure(self):
        self.trial_in_flight = False
        self.failure_count += 1
        # a failed trial reopens immediately
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def can_attempt(self) -> bool:
        """Closed circuits admit everyone, half-open ones a single trial call at a time"""
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            if self._clock() < self.retry_at:
                return False
            self._transition(CircuitState.HALF_OPEN)
        if self.trial_in_flight:
            return False
        self.trial_in_flight = True
        return True

    def release_trial(self):
        """Give up the trial slot without an outcome, e.g. on cancellation"""
        self.trial_in_flight = False

    def _transition(self, state: CircuitState):
        self.state = state
        self.trial_successes = 0
        self.trial_in_flight = False

        if state == CircuitState.OPEN:
            self.opened_at = self._clock()
            logger.warning(
                f"[Circuit Breaker: {self.name}] OPEN after {self.failure_count} failures,"
                f" retry in {self.recovery_timeout:.0f}s"
            )
        elif state == CircuitState.HALF_OPEN:
            logger.info(f"[Circuit Breaker: {self.name}] HALF-OPEN - allowing a trial call")
        else:
            self.failure_count = 0
            self.opened_at = None
            logger.info(f"[Circuit Breaker: {self.name}] CLOSED")


class RetryPolicy:
    """
    Bounded retries with exponential backoff and jitter. Only transport
    failures and 5xx answers are retried; anything the origin answered
    deliberately is final.
    """

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        if isinstance(error, CircuitOpenError):
            return False

        status_code = getattr(error, "status_code", None)
        if status_code is not None:
            return 500 <= status_code < 600

        if isinstance(error, RequestsError):
            return True
        return isinstance(error, UpstreamCallError) and isinstance(error.__cause__, RequestsError)

    @staticmethod
    def backoff_delay(attempt: int) -> float:
        delay = min(ProxyConfig.RETRY_BACKOFF_BASE ** attempt, ProxyConfig.RETRY_BACKOFF_MAX)
        return delay + random.uniform(0, ProxyConfig.RETRY_JITTER_MAX)

    @staticmethod
    async def run(
        func: Callable[[], Awaitable[T]],
        breaker: Optional[CircuitBreaker] = None,
        max_retries: int = ProxyConfig.MAX_RETRIES,
        operation: str = "operation"
    ) -> T:
        """
        Await ``func`` up to ``max_retries + 1`` times, feeding every outcome
        to ``breaker``. Raises CircuitOpenError without calling ``func`` while
        the breaker is open; otherwise the last error propagates.
        """
        attempt = 0
        while True:
            if breaker is not None and not breaker.can_attempt():
                raise CircuitOpenError(f"Circuit open for {operation}")

            try:
                result = await func()
            except asyncio.CancelledError:
                if breaker is not None:
                    breaker.release_trial()
                raise
            except Exception as e:
                if breaker is not None:
                    breaker.record_failure()

                if attempt >= max_retries or not RetryPolicy.is_retryable(e):
                    logger.info(f"[Retry] {operation} gave up after {attempt + 1} attempt(s): {e}")
                    raise

                delay = RetryPolicy.backoff_delay(attempt)
                attempt += 1
                logger.info(f"[Retry] {operation} attempt {attempt}/{max_retries} in {delay:.2f}s: {e}")
                await asyncio.sleep(delay)
                continue

            if breaker is not None:
                breaker.record_success()
            return result
