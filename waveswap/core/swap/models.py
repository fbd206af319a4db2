"""Typed models used by the private swap subsystem."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from ...providers.encifher import SignedTransaction, SwapQuote, UnsignedTransaction
from ..resilience.errors import ErrorCategory, InvalidStepTransition, ValidationError
from .constants import DEFAULT_SLIPPAGE_BPS, MAX_SLIPPAGE_BPS, TokenMetadata


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Display units to integer base units, truncating dust."""
    scaled = (amount * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(amount: int, decimals: int) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)


@dataclass(frozen=True)
class SwapRequest:
    """Immutable swap intent. Amount is a decimal string in display units.

    ``slippage_bps`` is validated and reported with the plan but not sent
    upstream: the pool quote and swap endpoints take no slippage field.
    """

    input_mint: str
    output_mint: str
    input_amount: str
    user_identity: str
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS

    def __post_init__(self) -> None:
        if not self.input_mint or not self.output_mint:
            raise ValidationError("Input and output tokens are required")
        if self.input_mint == self.output_mint:
            raise ValidationError("Input and output tokens must differ")
        if not self.user_identity:
            raise ValidationError("User identity is required")
        try:
            amount = Decimal(str(self.input_amount).strip())
        except InvalidOperation:
            raise ValidationError(f"Invalid amount: {self.input_amount!r}") from None
        if not amount.is_finite() or amount <= 0:
            raise ValidationError(f"Amount must be a positive number, got {self.input_amount!r}")
        if not 0 <= self.slippage_bps <= MAX_SLIPPAGE_BPS:
            raise ValidationError(f"Slippage must be between 0 and {MAX_SLIPPAGE_BPS} bps")

    @property
    def amount(self) -> Decimal:
        return Decimal(str(self.input_amount).strip())


class SwapStepKind(str, Enum):
    DEPOSIT = "deposit"
    QUOTE = "quote"
    SWAP = "swap"
    STATUS_POLL = "status_poll"
    WITHDRAW = "withdraw"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED)


@dataclass
class SwapStep:
    """One stage of a swap plan. Terminal states are final."""

    kind: SwapStepKind
    description: str
    estimated_duration: Tuple[int, int] = (0, 0)
    status: StepStatus = StepStatus.PENDING
    transaction_signature: Optional[str] = None
    order_status_identifier: Optional[str] = None
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    detail: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def _guard(self, target: StepStatus) -> None:
        if self.status.is_terminal:
            raise InvalidStepTransition(
                f"Step {self.kind.value} is already {self.status.value}, cannot move to {target.value}"
            )

    def start(self) -> None:
        self._guard(StepStatus.IN_PROGRESS)
        if self.status is StepStatus.IN_PROGRESS:
            return
        self.status = StepStatus.IN_PROGRESS
        self.started_at = time.time()

    def complete(self, detail: Optional[str] = None) -> None:
        self._guard(StepStatus.COMPLETED)
        self.status = StepStatus.COMPLETED
        if detail:
            self.detail = detail
        self.finished_at = time.time()

    def fail(self, message: str, category: ErrorCategory) -> None:
        self._guard(StepStatus.FAILED)
        self.status = StepStatus.FAILED
        self.error = message
        self.error_category = category
        self.finished_at = time.time()

    def snapshot(self) -> "SwapStep":
        """Detached copy handed to progress observers."""
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "status": self.status.value,
            "description": self.description,
            "estimated_duration": list(self.estimated_duration),
            "transaction_signature": self.transaction_signature,
            "order_status_identifier": self.order_status_identifier,
            "error": self.error,
            "error_category": self.error_category.value if self.error_category else None,
            "detail": self.detail,
        }


@dataclass
class SwapFlowPlan:
    """Ordered steps plus the quote they were planned against."""

    request: SwapRequest
    input_token: TokenMetadata
    output_token: TokenMetadata
    quote: SwapQuote
    steps: List[SwapStep]
    requires_deposit: bool
    requires_withdrawal: bool
    estimated_output_amount: Decimal
    total_estimated_seconds: int

    @property
    def total_estimated_time(self) -> str:
        minutes = max(1, -(-self.total_estimated_seconds // 60))
        return f"~{minutes} minute{'s' if minutes > 1 else ''}"

    @property
    def step_kinds(self) -> List[SwapStepKind]:
        return [step.kind for step in self.steps]

    def get_step(self, kind: SwapStepKind) -> Optional[SwapStep]:
        for step in self.steps:
            if step.kind is kind:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "requires_deposit": self.requires_deposit,
            "requires_withdrawal": self.requires_withdrawal,
            "slippage_bps": self.request.slippage_bps,
            "estimated_output_amount": str(self.estimated_output_amount),
            "total_estimated_time": self.total_estimated_time,
        }


class ExecutionStatus(str, Enum):
    QUOTING = "quoting"
    WRAPPING = "wrapping"
    SWAPPING = "swapping"
    CONFIRMING = "confirming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class FailureReport:
    """What the caller is told when a plan halts."""

    step: SwapStepKind
    category: ErrorCategory
    message: str
    funds_in_flight: bool
    recovery_hint: Optional[str] = None
    order_status_identifier: Optional[str] = None
    transaction_signature: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step.value,
            "category": self.category.value,
            "message": self.message,
            "funds_in_flight": self.funds_in_flight,
            "recovery_hint": self.recovery_hint,
            "order_status_identifier": self.order_status_identifier,
            "transaction_signature": self.transaction_signature,
        }


@dataclass
class SwapExecution:
    """Live run of a plan. Created per request, never persisted here."""

    plan: SwapFlowPlan
    status: ExecutionStatus = ExecutionStatus.QUOTING
    transaction_signatures: List[str] = field(default_factory=list)
    order_status_identifier: Optional[str] = None
    failure: Optional[FailureReport] = None


@dataclass
class SwapExecutionResult:
    success: bool
    transaction_signatures: List[str] = field(default_factory=list)
    final_balance: Optional[Decimal] = None
    order_status_identifier: Optional[str] = None
    failure: Optional[FailureReport] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "transaction_signatures": list(self.transaction_signatures),
            "final_balance": str(self.final_balance) if self.final_balance is not None else None,
            "order_status_identifier": self.order_status_identifier,
            "failure": self.failure.to_dict() if self.failure else None,
        }


@dataclass
class SwapRecord:
    """Row handed to the external swap store once the pool accepts a swap."""

    user_identity: str
    input_mint: str
    output_mint: str
    input_amount: str
    expected_output_amount: str
    order_status_identifier: str
    transaction_signatures: List[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)


class WalletSigner(Protocol):
    async def sign(self, transaction: UnsignedTransaction) -> SignedTransaction:
        """Sign or raise UserRejectedSigning."""
        ...


class SwapStore(Protocol):
    async def create(self, record: SwapRecord) -> str:
        ...

    async def get(self, record_id: str) -> Optional[SwapRecord]:
        ...


StepObserver = Callable[[SwapStep], None]
TokenResolver = Callable[[str], TokenMetadata]
