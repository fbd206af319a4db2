"""
Error Classification

Defines the error taxonomy for the swap orchestrator.
Errors are classified as recoverable (the resilience layer retries them) or
unrecoverable (surfaced to the caller as a typed outcome).
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors surfaced to callers and progress observers."""

    VALIDATION = "validation"                 # Bad request shape
    CONFIGURATION = "configuration"           # Missing API key / endpoint
    TRANSPORT = "transport"                   # Timeout or connection failure
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"  # Retries exhausted
    UPSTREAM_REJECTED = "upstream_rejected"   # 4xx from an upstream
    CIRCUIT_OPEN = "circuit_open"             # Breaker refused the call
    QUOTE_UNAVAILABLE = "quote_unavailable"   # No liquidity / unsupported pair
    USER_REJECTED = "user_rejected"           # Wallet signing declined
    CHAIN_FAILED = "chain_failed"             # Transaction errored on-chain
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    SETTLEMENT_FAILED = "settlement_failed"   # Privacy pool reported failure
    POLLING_TIMEOUT = "polling_timeout"       # Status unknown, use recovery
    POLLING_CANCELLED = "polling_cancelled"
    UNCLASSIFIABLE = "unclassifiable"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    endpoint: Optional[str] = None
    signature: Optional[str] = None
    order_status_identifier: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestrator."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        category: Optional[ErrorCategory] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        self.context = context or ErrorContext(category=self.category, recoverable=self.recoverable)


class RecoverableError(OrchestratorError):
    """
    Base class for errors the resilience layer may retry.

    These are transient: timeouts, dropped connections, 5xx and 429 responses.
    """

    recoverable = True


class UnrecoverableError(OrchestratorError):
    """
    Base class for errors that are never retried automatically.

    Raised inside a wrapped call they propagate immediately and do not count
    against the circuit breaker.
    """

    recoverable = False


class TransportError(RecoverableError):
    """Timeout or connection-level failure talking to an upstream."""

    category = ErrorCategory.TRANSPORT

    def __init__(self, message: str = "Transport error", endpoint: Optional[str] = None):
        super().__init__(
            message,
            context=ErrorContext(
                category=ErrorCategory.TRANSPORT,
                recoverable=True,
                endpoint=endpoint,
                suggested_action="Retry with exponential backoff",
            ),
        )


class ValidationError(UnrecoverableError):
    """Request failed validation before any network contact."""

    category = ErrorCategory.VALIDATION


class ConfigurationError(UnrecoverableError):
    """Required configuration (API key, URL) is missing."""

    category = ErrorCategory.CONFIGURATION


class UpstreamRejectedError(UnrecoverableError):
    """Upstream answered with a client error; retrying will not help."""

    category = ErrorCategory.UPSTREAM_REJECTED

    def __init__(self, message: str, status_code: int, endpoint: Optional[str] = None):
        super().__init__(
            message,
            context=ErrorContext(
                category=ErrorCategory.UPSTREAM_REJECTED,
                endpoint=endpoint,
                details={"status_code": status_code},
            ),
        )
        self.status_code = status_code


class UpstreamUnavailable(UnrecoverableError):
    """All attempts against an endpoint failed."""

    category = ErrorCategory.UPSTREAM_UNAVAILABLE

    def __init__(self, endpoint: str, attempts: int, last_error: Optional[Exception] = None):
        super().__init__(
            f"Upstream '{endpoint}' unavailable after {attempts} attempts: {last_error}",
            context=ErrorContext(
                category=ErrorCategory.UPSTREAM_UNAVAILABLE,
                endpoint=endpoint,
                suggested_action="Try again later",
                details={"attempts": attempts},
            ),
        )
        self.endpoint = endpoint
        self.attempts = attempts
        self.last_error = last_error


class CircuitOpenError(UnrecoverableError):
    """The breaker for an endpoint is open; no network call was made."""

    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(self, endpoint: str, retry_after: float):
        super().__init__(
            f"Circuit breaker for '{endpoint}' is open, retry in {retry_after:.1f}s",
            context=ErrorContext(
                category=ErrorCategory.CIRCUIT_OPEN,
                endpoint=endpoint,
                retry_after_seconds=retry_after,
                suggested_action=f"Wait {retry_after:.0f}s before retrying",
            ),
        )
        self.endpoint = endpoint
        self.retry_after = retry_after


class QuoteUnavailable(UnrecoverableError):
    """Insufficient liquidity or unsupported token pair."""

    category = ErrorCategory.QUOTE_UNAVAILABLE


class UserRejectedSigning(UnrecoverableError):
    """The wallet signer declined. Never retried, never counted by a breaker."""

    category = ErrorCategory.USER_REJECTED

    def __init__(self, message: str = "User rejected the signing request"):
        super().__init__(message)


class ChainTransactionFailed(UnrecoverableError):
    """A submitted transaction landed with an execution error."""

    category = ErrorCategory.CHAIN_FAILED

    def __init__(self, signature: str, err: Any):
        super().__init__(
            f"Transaction {signature} failed on-chain: {err}",
            context=ErrorContext(
                category=ErrorCategory.CHAIN_FAILED,
                signature=signature,
                details={"err": err},
            ),
        )
        self.signature = signature
        self.err = err


class ConfirmationTimeout(UnrecoverableError):
    """A submitted transaction was not observed as confirmed in time."""

    category = ErrorCategory.CONFIRMATION_TIMEOUT

    def __init__(self, signature: str, waited_seconds: float):
        super().__init__(
            f"Transaction {signature} not confirmed after {waited_seconds:.0f}s",
            context=ErrorContext(
                category=ErrorCategory.CONFIRMATION_TIMEOUT,
                signature=signature,
                suggested_action="Run recovery with the transaction signature",
            ),
        )
        self.signature = signature


class SwapSettlementFailed(UnrecoverableError):
    """The privacy pool itself reported the order as failed."""

    category = ErrorCategory.SETTLEMENT_FAILED

    def __init__(self, order_status_identifier: str, details: Any = None):
        super().__init__(
            f"Swap settlement failed for order {order_status_identifier}: {details}",
            context=ErrorContext(
                category=ErrorCategory.SETTLEMENT_FAILED,
                order_status_identifier=order_status_identifier,
                details={"details": details} if details is not None else {},
            ),
        )
        self.order_status_identifier = order_status_identifier
        self.details = details


class PollingTimeout(UnrecoverableError):
    """Polling budget exhausted while the order was still pending.

    Ambiguous: the swap may still settle. Route the user to recovery.
    """

    category = ErrorCategory.POLLING_TIMEOUT

    def __init__(self, order_status_identifier: str, attempts: int):
        super().__init__(
            f"Swap status unknown after {attempts} polls of order {order_status_identifier}; "
            "use recovery instead of resubmitting",
            context=ErrorContext(
                category=ErrorCategory.POLLING_TIMEOUT,
                order_status_identifier=order_status_identifier,
                suggested_action="Run recovery with the order identifier",
                details={"attempts": attempts},
            ),
        )
        self.order_status_identifier = order_status_identifier
        self.attempts = attempts


class PollingCancelled(UnrecoverableError):
    """Local observation stopped by the caller; the order itself is untouched."""

    category = ErrorCategory.POLLING_CANCELLED

    def __init__(self, order_status_identifier: str):
        super().__init__(
            f"Stopped observing order {order_status_identifier}; it may still settle",
            context=ErrorContext(
                category=ErrorCategory.POLLING_CANCELLED,
                order_status_identifier=order_status_identifier,
            ),
        )
        self.order_status_identifier = order_status_identifier


class UnableToClassify(UnrecoverableError):
    """Recovery classification itself could not complete."""

    category = ErrorCategory.UNCLASSIFIABLE


class InvalidStepTransition(UnrecoverableError):
    """A swap step was asked to leave a terminal state."""

    category = ErrorCategory.INVALID_TRANSITION


RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


def classify_error(error: BaseException, endpoint: Optional[str] = None) -> OrchestratorError:
    """
    Normalise an exception raised inside an upstream call.

    Already-classified errors are returned unchanged. httpx and asyncio
    failures are mapped onto the taxonomy; anything else is treated as a
    transport failure so the resilience layer retries it.
    """
    if isinstance(error, OrchestratorError):
        return error

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return TransportError(f"Timed out: {error!r}", endpoint=endpoint)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return TransportError(f"HTTP {status} from upstream", endpoint=endpoint)
        return UpstreamRejectedError(
            f"HTTP {status} from upstream: {error.response.text[:200]}",
            status_code=status,
            endpoint=endpoint,
        )

    if isinstance(error, httpx.TransportError):
        return TransportError(f"Connection failure: {error!r}", endpoint=endpoint)

    # Unknown failures inside a wrapped call count as transport failures
    return TransportError(f"Unexpected upstream failure: {error!r}", endpoint=endpoint)
