"""
Upstream Resilience Module

Provides error classification, retry policies and per-endpoint circuit
breaking for every call the orchestrator makes to an external service.
"""

from .errors import (
    OrchestratorError,
    RecoverableError,
    UnrecoverableError,
    TransportError,
    ValidationError,
    ConfigurationError,
    UpstreamRejectedError,
    UpstreamUnavailable,
    CircuitOpenError,
    QuoteUnavailable,
    UserRejectedSigning,
    ChainTransactionFailed,
    ConfirmationTimeout,
    SwapSettlementFailed,
    PollingTimeout,
    PollingCancelled,
    UnableToClassify,
    InvalidStepTransition,
    ErrorCategory,
    ErrorContext,
    classify_error,
)
from .executor import EventHook, ResilienceEvent, ResilienceWrapper
from .strategies import (
    CallPolicy,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitState,
    READ_POLICY,
    TRANSACTIONAL_POLICY,
)

SOLANA_RPC_ENDPOINT = "solana-rpc"
PRIVACY_POOL_ENDPOINT = "privacy-pool"

__all__ = [
    # Errors
    "OrchestratorError",
    "RecoverableError",
    "UnrecoverableError",
    "TransportError",
    "ValidationError",
    "ConfigurationError",
    "UpstreamRejectedError",
    "UpstreamUnavailable",
    "CircuitOpenError",
    "QuoteUnavailable",
    "UserRejectedSigning",
    "ChainTransactionFailed",
    "ConfirmationTimeout",
    "SwapSettlementFailed",
    "PollingTimeout",
    "PollingCancelled",
    "UnableToClassify",
    "InvalidStepTransition",
    "ErrorCategory",
    "ErrorContext",
    "classify_error",
    # Wrapper
    "ResilienceWrapper",
    "ResilienceEvent",
    "EventHook",
    # Strategies
    "CallPolicy",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    "READ_POLICY",
    "TRANSACTIONAL_POLICY",
    # Endpoint keys
    "SOLANA_RPC_ENDPOINT",
    "PRIVACY_POOL_ENDPOINT",
]
