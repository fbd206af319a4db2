"""
Resilience Wrapper

Single retry + circuit-breaker path for every upstream call. Callers pass an
endpoint key and a coroutine factory; the wrapper owns backoff, per-attempt
timeouts and breaker accounting.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

import structlog

from .errors import (
    CircuitOpenError,
    ErrorCategory,
    OrchestratorError,
    UnrecoverableError,
    UpstreamUnavailable,
    classify_error,
)
from .strategies import CallPolicy, CircuitBreakerRegistry, CircuitBreakerState, CircuitState

T = TypeVar("T")

logger = structlog.stdlib.get_logger(__name__)


@dataclass(frozen=True)
class ResilienceEvent:
    """One observable step of a wrapped call. Carries no payloads."""

    endpoint: str
    operation: str
    attempt: int
    max_attempts: int
    outcome: str                      # success | failure | rejected | circuit_open | exhausted
    error_category: Optional[ErrorCategory] = None
    delay_seconds: Optional[float] = None


EventHook = Callable[[ResilienceEvent], None]
Sleeper = Callable[[float], Awaitable[Any]]


class ResilienceWrapper:
    """
    Executes upstream calls with retry, hard timeouts and circuit breaking.

    One instance is built per process and injected into every client, so the
    breaker table is shared by all in-flight swaps but each endpoint key has
    its own state.
    """

    def __init__(
        self,
        breakers: Optional[CircuitBreakerRegistry] = None,
        on_event: Optional[EventHook] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.breakers = breakers or CircuitBreakerRegistry()
        self._on_event = on_event
        self._sleep = sleep

    async def call(
        self,
        endpoint_key: str,
        fn: Callable[[], Coroutine[Any, Any, T]],
        policy: CallPolicy,
        operation: str = "call",
    ) -> T:
        """
        Run ``fn`` against ``endpoint_key`` under ``policy``.

        Raises:
            CircuitOpenError: breaker open, no attempt made.
            UpstreamUnavailable: every attempt failed.
            UnrecoverableError: raised by ``fn`` itself, passed through untouched.
        """
        retry_after = self.breakers.retry_after(endpoint_key, policy)
        if retry_after is not None:
            self._emit(ResilienceEvent(endpoint_key, operation, 0, policy.max_attempts, "circuit_open"))
            raise CircuitOpenError(endpoint_key, retry_after)

        last_error: Optional[OrchestratorError] = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                result = await asyncio.wait_for(fn(), timeout=policy.timeout_seconds)
            except UnrecoverableError as exc:
                # Upstream answered; a domain rejection says nothing about its health
                self._emit(
                    ResilienceEvent(
                        endpoint_key, operation, attempt, policy.max_attempts, "rejected", exc.category
                    )
                )
                raise
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                last_error = classify_error(exc, endpoint=endpoint_key)
                if not last_error.recoverable:
                    self._emit(
                        ResilienceEvent(
                            endpoint_key,
                            operation,
                            attempt,
                            policy.max_attempts,
                            "rejected",
                            last_error.category,
                        )
                    )
                    raise last_error from exc

                delay = policy.get_delay(attempt) if attempt < policy.max_attempts else None
                self._emit(
                    ResilienceEvent(
                        endpoint_key,
                        operation,
                        attempt,
                        policy.max_attempts,
                        "failure",
                        last_error.category,
                        delay,
                    )
                )
                if delay is not None:
                    await self._sleep(delay)
            else:
                await self.breakers.record_success(endpoint_key)
                self._emit(ResilienceEvent(endpoint_key, operation, attempt, policy.max_attempts, "success"))
                return result

        state = await self.breakers.record_failure(endpoint_key, policy)
        self._emit(
            ResilienceEvent(
                endpoint_key,
                operation,
                policy.max_attempts,
                policy.max_attempts,
                "exhausted",
                ErrorCategory.UPSTREAM_UNAVAILABLE,
            )
        )
        logger.error(
            "upstream_exhausted",
            endpoint=endpoint_key,
            operation=operation,
            attempts=policy.max_attempts,
            consecutive_failures=state.consecutive_failures,
            breaker_open=state.open,
        )
        raise UpstreamUnavailable(endpoint_key, policy.max_attempts, last_error)

    def snapshot(self, endpoint_key: str) -> CircuitBreakerState:
        return self.breakers.snapshot(endpoint_key)

    def circuit_state(self, endpoint_key: str, policy: CallPolicy) -> CircuitState:
        return self.breakers.circuit_state(endpoint_key, policy)

    def reset(self, endpoint_key: str) -> bool:
        return self.breakers.reset(endpoint_key)

    def _emit(self, event: ResilienceEvent) -> None:
        log = logger.warning if event.outcome in ("failure", "circuit_open") else logger.debug
        log(
            "upstream_attempt",
            endpoint=event.endpoint,
            operation=event.operation,
            attempt=event.attempt,
            max_attempts=event.max_attempts,
            outcome=event.outcome,
            error_category=event.error_category.value if event.error_category else None,
            delay_seconds=event.delay_seconds,
        )
        if self._on_event is not None:
            try:
                self._on_event(event)
            except Exception:  # noqa: BLE001
                logger.exception("resilience_event_hook_failed", endpoint=event.endpoint)
