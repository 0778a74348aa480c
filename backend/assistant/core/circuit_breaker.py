"""
Circuit breaker for external providers (LLM, embeddings, Redis).

- Opens at a 50% error rate over a 60 second window (min 10 requests)
- Stays open for 30 seconds
- Half-open: lets 10% of calls through as trial calls; 3 of 5 trial calls must
  succeed to close again
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from assistant.core.logging import get_logger

logger = get_logger(__name__)

HALF_OPEN_TRIALS = 5
HALF_OPEN_SUCCESSES_TO_CLOSE = 3


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""


class CircuitBreaker:
    """Error-rate circuit breaker guarding a single dependency."""

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        half_open_test_percentage: float = 0.1,
        min_requests_for_threshold: int = 10,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_test_percentage = half_open_test_percentage
        self.min_requests_for_threshold = min_requests_for_threshold

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._history: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._half_open_seen = 0
        self._trial_successes = 0
        self._trial_failures = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(time.time())
            return self._state

    def _refresh(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_seen = 0
                self._trial_successes = 0
                self._trial_failures = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)
        elif self._state == CircuitState.CLOSED:
            total = len(self._history)
            if total >= self.min_requests_for_threshold:
                failures = sum(1 for _, ok in self._history if not ok)
                error_rate = failures / total
                if error_rate >= self.failure_threshold:
                    self._trip(now)
                    logger.warning(
                        "circuit_breaker_opened",
                        circuit_breaker=self.name,
                        error_rate=error_rate,
                        failures=failures,
                        total=total,
                    )

    def _trip(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._history.clear()

    def _admit(self) -> None:
        with self._lock:
            self._refresh(time.time())
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker {self.name} is OPEN. Service unavailable."
                )
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_seen += 1
                every = max(1, int(round(1 / self.half_open_test_percentage)))
                if self._half_open_seen % every != 0:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is HALF_OPEN. Skipping request."
                    )

    def _record(self, success: bool) -> None:
        now = time.time()
        with self._lock:
            if self._state != CircuitState.HALF_OPEN:
                self._history.append((now, success))
                return

            if success:
                self._trial_successes += 1
            else:
                self._trial_failures += 1

            if self._trial_successes + self._trial_failures < HALF_OPEN_TRIALS:
                return

            if self._trial_successes >= HALF_OPEN_SUCCESSES_TO_CLOSE:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                logger.info(
                    "circuit_breaker_closed",
                    circuit_breaker=self.name,
                    success_count=self._trial_successes,
                    failure_count=self._trial_failures,
                )
            else:
                self._trip(now)
                logger.warning(
                    "circuit_breaker_reopened",
                    circuit_breaker=self.name,
                    success_count=self._trial_successes,
                    failure_count=self._trial_failures,
                )

    def record_success(self) -> None:
        self._record(True)

    def record_failure(self) -> None:
        self._record(False)

    def ensure_closed(self) -> None:
        """
        Raise CircuitBreakerOpenError if a call would be rejected.

        For call sites that cannot be wrapped by call_async (e.g. a streamed
        response) and report their outcome via record_success/record_failure.
        """
        self._admit()

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute an async function with circuit breaker protection."""
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        self._record(True)
        return result

    def get_metrics(self) -> dict:
        with self._lock:
            self._refresh(time.time())
            failures = sum(1 for _, ok in self._history if not ok)
            total = len(self._history)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
                "opened_at": self._opened_at,
            }
