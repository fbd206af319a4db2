"""
Resilience Strategies

Retry policy and per-endpoint circuit breaker state used by the
ResilienceWrapper.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Optional


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"       # Normal operation
    OPEN = "open"           # Failing, reject requests
    HALF_OPEN = "half_open"  # Recovery window elapsed, next call is a probe


@dataclass(frozen=True)
class CallPolicy:
    """Retry and breaker parameters for one class of upstream call."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    timeout_seconds: float = 10.0
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")

    def get_delay(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        return self.base_delay_seconds * (2 ** (attempt - 1))

    def with_attempts(self, max_attempts: int) -> "CallPolicy":
        return replace(self, max_attempts=max_attempts)


TRANSACTIONAL_POLICY = CallPolicy(max_attempts=3)
READ_POLICY = CallPolicy(max_attempts=5)


@dataclass
class CircuitBreakerState:
    """Breaker bookkeeping for a single upstream endpoint."""

    open: bool = False
    consecutive_failures: int = 0
    last_failure_timestamp: Optional[float] = None

    def is_open(self, now: float, recovery_timeout: float) -> bool:
        if not self.open or self.last_failure_timestamp is None:
            return False
        return (now - self.last_failure_timestamp) < recovery_timeout

    def state(self, now: float, recovery_timeout: float) -> CircuitState:
        if self.is_open(now, recovery_timeout):
            return CircuitState.OPEN
        if self.open:
            return CircuitState.HALF_OPEN
        return CircuitState.CLOSED

    def time_until_recovery(self, now: float, recovery_timeout: float) -> float:
        if self.last_failure_timestamp is None:
            return 0.0
        return max(0.0, recovery_timeout - (now - self.last_failure_timestamp))


class CircuitBreakerRegistry:
    """
    Map of endpoint key to breaker state.

    Owned by one ResilienceWrapper and shared by every call routed through
    it. Each state is mutated only while holding its own lock, so two
    concurrent failure reports both land.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._states: Dict[str, CircuitBreakerState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def now(self) -> float:
        return self._clock()

    def _state_for(self, endpoint_key: str) -> CircuitBreakerState:
        state = self._states.get(endpoint_key)
        if state is None:
            state = CircuitBreakerState()
            self._states[endpoint_key] = state
            self._locks[endpoint_key] = asyncio.Lock()
        return state

    def retry_after(self, endpoint_key: str, policy: CallPolicy) -> Optional[float]:
        """Seconds until the breaker half-opens, or None if calls may proceed."""
        state = self._state_for(endpoint_key)
        now = self.now()
        if state.is_open(now, policy.recovery_timeout_seconds):
            return state.time_until_recovery(now, policy.recovery_timeout_seconds)
        return None

    async def record_success(self, endpoint_key: str) -> None:
        state = self._state_for(endpoint_key)
        async with self._locks[endpoint_key]:
            was_open = state.open
            state.consecutive_failures = 0
            state.open = False
        if was_open:
            self.logger.info(f"Circuit breaker '{endpoint_key}' closed, service recovered")

    async def record_failure(self, endpoint_key: str, policy: CallPolicy) -> CircuitBreakerState:
        state = self._state_for(endpoint_key)
        async with self._locks[endpoint_key]:
            state.consecutive_failures += 1
            if state.consecutive_failures >= policy.failure_threshold:
                opened = not state.open
                state.open = True
                state.last_failure_timestamp = self.now()
                if opened:
                    self.logger.warning(
                        f"Circuit breaker '{endpoint_key}' opened after "
                        f"{state.consecutive_failures} failures"
                    )
            snapshot = replace(state)
        return snapshot

    def snapshot(self, endpoint_key: str) -> CircuitBreakerState:
        """Copy of the current state for observability."""
        return replace(self._state_for(endpoint_key))

    def circuit_state(self, endpoint_key: str, policy: CallPolicy) -> CircuitState:
        return self._state_for(endpoint_key).state(self.now(), policy.recovery_timeout_seconds)

    def reset(self, endpoint_key: str) -> bool:
        """Manually close a breaker."""
        state = self._states.get(endpoint_key)
        if state is None:
            return False
        state.open = False
        state.consecutive_failures = 0
        state.last_failure_timestamp = None
        self.logger.info(f"Circuit breaker '{endpoint_key}' manually reset")
        return True
