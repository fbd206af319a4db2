"""
Private Swap Module

Planning and execution of deposit -> private swap -> settlement -> withdrawal
flows against the Encifher privacy pool.
"""

from .constants import TOKEN_REGISTRY, TokenMetadata, resolve_token_metadata
from .executor import ExecutorConfig, SwapFlowExecutor
from .models import (
    ExecutionStatus,
    FailureReport,
    StepStatus,
    SwapExecution,
    SwapExecutionResult,
    SwapFlowPlan,
    SwapRecord,
    SwapRequest,
    SwapStep,
    SwapStepKind,
    SwapStore,
    WalletSigner,
)
from .planner import SwapFlowPlanner
from .poller import OrderStatusPoller

__all__ = [
    # Models
    "SwapRequest",
    "SwapStep",
    "SwapStepKind",
    "StepStatus",
    "SwapFlowPlan",
    "SwapExecution",
    "SwapExecutionResult",
    "ExecutionStatus",
    "FailureReport",
    "SwapRecord",
    "SwapStore",
    "WalletSigner",
    # Tokens
    "TOKEN_REGISTRY",
    "TokenMetadata",
    "resolve_token_metadata",
    # Components
    "OrderStatusPoller",
    "SwapFlowPlanner",
    "SwapFlowExecutor",
    "ExecutorConfig",
]
