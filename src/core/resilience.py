"""
RESILIENCE MODULE
Circuit breaker over consecutive model failures, adaptive backoff, and
bounded retry for calls across the model boundary
"""
import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

import structlog

from src.core.errors import ModelRateLimitError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Tripped, skip model calls
    HALF_OPEN = "half_open"  # Cooldown elapsed, allow a trial call


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 3          # Consecutive failures before opening
    recovery_timeout_s: float = 1800.0  # Cooldown before a half-open trial call
    success_threshold: int = 1          # Probe successes needed to close
    half_open_max_calls: int = 1        # Probes allowed while half-open

    @classmethod
    def from_settings(cls, settings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.AI_FAILURE_THRESHOLD,
            recovery_timeout_s=settings.AI_COOLDOWN_MINUTES * 60,
        )


class CircuitBreaker:
    """
    Circuit breaker for the decision model.

    States:
    - CLOSED: Normal operation, count consecutive failures
    - OPEN: Skip model calls until the cooldown elapses
    - HALF_OPEN: Allow a limited trial call; success closes, failure re-opens
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._last_failure_time: float = 0
        self._state_change_time: float = clock()

    @property
    def state(self) -> CircuitState:
        # Auto-transition from OPEN to HALF_OPEN after cooldown
        if self._state == CircuitState.OPEN:
            if self._clock() - self._state_change_time >= self.config.recovery_timeout_s:
                self._transition_to(CircuitState.HALF_OPEN)
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def can_proceed(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.OPEN:
            return False
        if self._half_open_calls < self.config.half_open_max_calls:
            self._half_open_calls += 1
            return True
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self, reason: str = "") -> None:
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN, reason)
        elif self._state == CircuitState.CLOSED:
            self._failure_count += 1
            logger.warning(
                "circuit_failure_recorded",
                breaker=self.name,
                failures=self._failure_count,
                threshold=self.config.failure_threshold,
                reason=reason,
            )
            if self._failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN, reason)

    def _transition_to(self, new_state: CircuitState, reason: str = "") -> None:
        old_state = self._state
        self._state = new_state
        self._state_change_time = self._clock()

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._success_count = 0

        logger.info(
            "circuit_state_change",
            breaker=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            reason=reason,
        )

    def reset(self) -> None:
        self._transition_to(CircuitState.CLOSED, "manual reset")

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "last_failure": self._last_failure_time,
            "time_in_state_s": self._clock() - self._state_change_time,
        }


class AdaptiveBackoff:
    """
    Exponential backoff with jitter.
    A server-provided retry-after hint takes precedence when present.
    """

    def __init__(
        self,
        base_delay_s: float = 1.0,
        max_delay_s: float = 30.0,
        jitter_factor: float = 0.3,
    ):
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.jitter_factor = jitter_factor

        self._consecutive_failures = 0

    def get_delay(self, retry_after_s: Optional[float] = None) -> float:
        if retry_after_s is not None and retry_after_s >= 0:
            delay = min(retry_after_s, self.max_delay_s)
        else:
            exp = min(self._consecutive_failures, 6)  # Cap at 2^6 = 64x
            delay = self.base_delay_s * (2 ** exp)
            delay += delay * self.jitter_factor * random.uniform(-1, 1)
            delay = max(min(delay, self.max_delay_s), self.base_delay_s)

        return delay

    def record_success(self) -> None:
        self._consecutive_failures = 0

    def record_failure(self) -> None:
        self._consecutive_failures += 1

    def reset(self) -> None:
        self._consecutive_failures = 0


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    backoff: Optional[AdaptiveBackoff] = None,
    retry_on: Tuple[Type[BaseException], ...] = (ModelRateLimitError,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    name: str = "call",
) -> T:
    """
    Await `fn()` up to `max_attempts` times.

    Only exceptions in `retry_on` are retried; anything else propagates
    immediately, as does the last retryable error once attempts run out.
    """
    backoff = backoff or AdaptiveBackoff()
    attempt = 0
    while True:
        attempt += 1
        try:
            result = await fn()
        except retry_on as e:
            if attempt >= max_attempts:
                logger.error("retry_exhausted", call=name, attempts=attempt, error=str(e))
                raise
            delay = backoff.get_delay(getattr(e, "retry_after_s", None))
            backoff.record_failure()
            logger.warning(
                "retrying_after_error",
                call=name,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_s=round(delay, 2),
                error=str(e),
            )
            await sleep(delay)
            continue
        backoff.record_success()
        return result
