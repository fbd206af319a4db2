"""
Swap Flow Executor

Drives a SwapFlowPlan step by step: build, sign, submit, confirm. Halts on
the first failed step and never rolls anything back; once the pool holds a
swap only the recovery classifier can say what to do next.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

import structlog

from ...providers.encifher import BalanceProof, EncifherClient
from ...providers.solana import SolanaRpcClient
from ..background import BackgroundTasks
from ..resilience.errors import (
    ErrorCategory,
    InvalidStepTransition,
    OrchestratorError,
    PollingTimeout,
)
from .models import (
    ExecutionStatus,
    FailureReport,
    StepObserver,
    StepStatus,
    SwapExecution,
    SwapExecutionResult,
    SwapFlowPlan,
    SwapRecord,
    SwapStep,
    SwapStepKind,
    SwapStore,
    WalletSigner,
    from_base_units,
    to_base_units,
)
from .poller import OrderStatusPoller

logger = structlog.stdlib.get_logger(__name__)

STEP_EXECUTION_STATUS: Dict[SwapStepKind, ExecutionStatus] = {
    SwapStepKind.QUOTE: ExecutionStatus.QUOTING,
    SwapStepKind.DEPOSIT: ExecutionStatus.WRAPPING,
    SwapStepKind.SWAP: ExecutionStatus.SWAPPING,
    SwapStepKind.STATUS_POLL: ExecutionStatus.CONFIRMING,
    SwapStepKind.WITHDRAW: ExecutionStatus.CONFIRMING,
}

# Steps from which a failure can leave funds with the privacy pool
IN_FLIGHT_STEPS = {SwapStepKind.SWAP, SwapStepKind.STATUS_POLL, SwapStepKind.WITHDRAW}

NO_PRIVATE_BALANCE = "No private balance to withdraw"


@dataclass
class ExecutorConfig:
    """Timing knobs for execution."""

    poll_interval_seconds: float = 3.0
    poll_max_attempts: int = 40
    confirmation_timeout_seconds: float = 60.0
    confirmation_interval_seconds: float = 2.0


class SwapFlowExecutor:
    """
    Executes planned private swaps.

    Usage:
        executor = SwapFlowExecutor(client, chain, poller)
        result = await executor.execute(plan, signer, on_step_update=render)
        if not result.success and result.failure.funds_in_flight:
            ...  # point the user at recovery with result.failure identifiers
    """

    def __init__(
        self,
        client: EncifherClient,
        chain: SolanaRpcClient,
        poller: OrderStatusPoller,
        config: Optional[ExecutorConfig] = None,
        store: Optional[SwapStore] = None,
        background: Optional[BackgroundTasks] = None,
    ):
        self.client = client
        self.chain = chain
        self.poller = poller
        self.config = config or ExecutorConfig()
        self.store = store
        self.background = background or BackgroundTasks()

    async def execute(
        self,
        plan: SwapFlowPlan,
        signer: WalletSigner,
        on_step_update: Optional[StepObserver] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        balance_proof: Optional[BalanceProof] = None,
    ) -> SwapExecutionResult:
        execution = SwapExecution(plan=plan)
        request = plan.request

        with structlog.contextvars.bound_contextvars(
            user=request.user_identity[:8],
            pair=f"{plan.input_token.symbol}->{plan.output_token.symbol}",
        ):
            logger.info("swap_execution_started", steps=[kind.value for kind in plan.step_kinds])

            executed = [
                step for step in plan.steps
                if step.kind is not SwapStepKind.QUOTE and step.status is not StepStatus.PENDING
            ]
            if executed:
                return self._refuse_rerun(execution, executed[0])

            for step in plan.steps:
                if step.kind is SwapStepKind.QUOTE:
                    # Settled during planning
                    continue

                execution.status = STEP_EXECUTION_STATUS[step.kind]
                step.start()
                self._notify(on_step_update, step)

                try:
                    detail = await self._run_step(step, execution, signer, on_step_update, cancel_event, balance_proof)
                except asyncio.CancelledError:
                    step.fail("Execution cancelled", ErrorCategory.POLLING_CANCELLED)
                    self._notify(on_step_update, step)
                    logger.warning("swap_execution_cancelled", step=step.kind.value)
                    raise
                except OrchestratorError as exc:
                    return self._halt(execution, step, exc.message, exc.category, exc, on_step_update)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("swap_step_crashed", step=step.kind.value)
                    return self._halt(execution, step, str(exc), ErrorCategory.UNKNOWN, exc, on_step_update)

                step.complete(detail)
                self._notify(on_step_update, step)
                logger.info("swap_step_completed", step=step.kind.value, detail=detail)

            execution.status = ExecutionStatus.COMPLETED

            final_balance = None
            withdraw = plan.get_step(SwapStepKind.WITHDRAW)
            if withdraw is not None and withdraw.status is StepStatus.COMPLETED:
                final_balance = await self._refresh_public_balance(plan)

            logger.info(
                "swap_execution_completed",
                order_status_identifier=execution.order_status_identifier,
                signatures=len(execution.transaction_signatures),
            )
            return SwapExecutionResult(
                success=True,
                transaction_signatures=list(execution.transaction_signatures),
                final_balance=final_balance,
                order_status_identifier=execution.order_status_identifier,
            )

    async def _run_step(
        self,
        step: SwapStep,
        execution: SwapExecution,
        signer: WalletSigner,
        on_step_update: Optional[StepObserver],
        cancel_event: Optional[asyncio.Event],
        balance_proof: Optional[BalanceProof],
    ) -> Optional[str]:
        if step.kind is SwapStepKind.DEPOSIT:
            return await self._deposit(step, execution, signer)
        if step.kind is SwapStepKind.SWAP:
            return await self._swap(step, execution, signer)
        if step.kind is SwapStepKind.STATUS_POLL:
            return await self._status_poll(step, execution, on_step_update, cancel_event)
        if step.kind is SwapStepKind.WITHDRAW:
            return await self._withdraw(step, execution, signer, balance_proof)
        raise InvalidStepTransition(f"Step {step.kind.value} cannot be executed")

    # ---------------------------
    # Steps
    # ---------------------------
    async def _deposit(self, step: SwapStep, execution: SwapExecution, signer: WalletSigner) -> Optional[str]:
        plan = execution.plan
        token = plan.input_token
        amount = to_base_units(plan.request.amount, token.decimals)

        unsigned = await self.client.build_deposit_transaction(
            plan.request.input_mint, token.decimals, amount, plan.request.user_identity
        )
        signed = await signer.sign(unsigned)
        signature = await self.chain.send_transaction(signed.serialized)
        self._record_signature(step, execution, signature)

        await self.chain.wait_for_confirmation(
            signature,
            timeout_s=self.config.confirmation_timeout_seconds,
            poll_interval_s=self.config.confirmation_interval_seconds,
        )
        return None

    async def _swap(self, step: SwapStep, execution: SwapExecution, signer: WalletSigner) -> Optional[str]:
        plan = execution.plan
        quote = plan.quote
        user = plan.request.user_identity

        # Built against the planned quote; execution never re-quotes
        unsigned = await self.client.build_swap_transaction(
            quote.input_mint, quote.output_mint, quote.amount_in, user, user
        )
        signed = await signer.sign(unsigned)
        submission = await self.client.execute_signed_swap(signed, unsigned.order_details)

        step.order_status_identifier = submission.order_status_identifier
        execution.order_status_identifier = submission.order_status_identifier
        if signed.signature:
            self._record_signature(step, execution, signed.signature)

        logger.info("swap_in_flight", order_status_identifier=submission.order_status_identifier)
        self._persist(execution)
        return None

    async def _status_poll(
        self,
        step: SwapStep,
        execution: SwapExecution,
        on_step_update: Optional[StepObserver],
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[str]:
        order_id = execution.order_status_identifier
        if not order_id:
            raise InvalidStepTransition("Status poll started without a submitted swap")
        step.order_status_identifier = order_id

        def on_progress(attempt, max_attempts, status):
            state = status.status.value if status is not None else "unavailable"
            step.detail = f"Poll {attempt}/{max_attempts}: {state}"
            self._notify(on_step_update, step)

        await self.poller.poll_until_terminal(
            order_id,
            interval_seconds=self.config.poll_interval_seconds,
            max_attempts=self.config.poll_max_attempts,
            cancel_event=cancel_event,
            on_progress=on_progress,
        )
        return "Private swap settled"

    async def _withdraw(
        self,
        step: SwapStep,
        execution: SwapExecution,
        signer: WalletSigner,
        balance_proof: Optional[BalanceProof],
    ) -> Optional[str]:
        plan = execution.plan
        token = plan.output_token
        user = plan.request.user_identity
        amount = plan.quote.expected_out_amount

        if balance_proof is not None:
            balances = await self.client.get_private_balance(user, [plan.request.output_mint], balance_proof)
            entry = balances.get(plan.request.output_mint)
            available = entry.balance if entry else 0
            if available <= 0:
                return NO_PRIVATE_BALANCE
            amount = min(available, amount)

        unsigned = await self.client.build_withdraw_transaction(plan.request.output_mint, token.decimals, amount, user)
        signed = await signer.sign(unsigned)
        signature = await self.chain.send_transaction(signed.serialized)
        self._record_signature(step, execution, signature)

        await self.chain.wait_for_confirmation(
            signature,
            timeout_s=self.config.confirmation_timeout_seconds,
            poll_interval_s=self.config.confirmation_interval_seconds,
        )
        return f"Withdrew {from_base_units(amount, token.decimals)} {token.symbol}"

    # ---------------------------
    # Helpers
    # ---------------------------
    def _record_signature(self, step: SwapStep, execution: SwapExecution, signature: str) -> None:
        step.transaction_signature = signature
        execution.transaction_signatures.append(signature)

    def _persist(self, execution: SwapExecution) -> None:
        if self.store is None or not execution.order_status_identifier:
            return
        plan = execution.plan
        record = SwapRecord(
            user_identity=plan.request.user_identity,
            input_mint=plan.request.input_mint,
            output_mint=plan.request.output_mint,
            input_amount=plan.request.input_amount,
            expected_output_amount=str(plan.estimated_output_amount),
            order_status_identifier=execution.order_status_identifier,
            transaction_signatures=list(execution.transaction_signatures),
        )
        self.background.spawn(
            self.store.create(record),
            name=f"swap-record-{execution.order_status_identifier}",
        )

    async def _refresh_public_balance(self, plan: SwapFlowPlan) -> Optional[Decimal]:
        try:
            raw = await self.chain.get_token_balance(plan.request.user_identity, plan.request.output_mint)
        except Exception as exc:  # noqa: BLE001
            logger.warning("final_balance_refresh_failed", error=str(exc))
            return None
        return from_base_units(raw, plan.output_token.decimals)

    def _notify(self, on_step_update: Optional[StepObserver], step: SwapStep) -> None:
        if on_step_update is None:
            return
        try:
            on_step_update(step.snapshot())
        except Exception as exc:  # noqa: BLE001
            logger.warning("step_observer_failed", step=step.kind.value, error=str(exc))

    def _halt(
        self,
        execution: SwapExecution,
        step: SwapStep,
        message: str,
        category: ErrorCategory,
        exc: BaseException,
        on_step_update: Optional[StepObserver],
    ) -> SwapExecutionResult:
        step.fail(message, category)
        self._notify(on_step_update, step)

        execution.status = ExecutionStatus.FAILED
        execution.failure = self._failure_report(execution, step, message, category, exc)

        logger.warning(
            "swap_execution_failed",
            step=step.kind.value,
            category=category.value,
            funds_in_flight=execution.failure.funds_in_flight,
            order_status_identifier=execution.order_status_identifier,
        )
        return SwapExecutionResult(
            success=False,
            transaction_signatures=list(execution.transaction_signatures),
            order_status_identifier=execution.order_status_identifier,
            failure=execution.failure,
        )

    def _refuse_rerun(self, execution: SwapExecution, step: SwapStep) -> SwapExecutionResult:
        """A plan runs once; a retry needs a fresh plan and quote."""
        order_id = next(
            (s.order_status_identifier for s in execution.plan.steps if s.order_status_identifier), None
        )
        signature = next(
            (s.transaction_signature for s in execution.plan.steps if s.transaction_signature), None
        )
        hint = "Create a new plan before retrying"
        if order_id:
            hint = f"Swap {order_id} was already submitted. Do not resubmit; run recovery with order {order_id}"

        execution.status = ExecutionStatus.FAILED
        execution.failure = FailureReport(
            step=step.kind,
            category=ErrorCategory.INVALID_TRANSITION,
            message=f"Plan was already executed (step {step.kind.value} is {step.status.value})",
            funds_in_flight=order_id is not None,
            recovery_hint=hint,
            order_status_identifier=order_id,
            transaction_signature=signature,
        )
        logger.warning("swap_plan_rerun_refused", step=step.kind.value, status=step.status.value)
        return SwapExecutionResult(
            success=False,
            order_status_identifier=order_id,
            failure=execution.failure,
        )

    def _failure_report(
        self,
        execution: SwapExecution,
        step: SwapStep,
        message: str,
        category: ErrorCategory,
        exc: BaseException,
    ) -> FailureReport:
        funds_in_flight = step.kind in IN_FLIGHT_STEPS
        signature = step.transaction_signature or (
            execution.transaction_signatures[-1] if execution.transaction_signatures else None
        )

        if isinstance(exc, PollingTimeout):
            message = f"Status unknown, use recovery instead of resubmitting. {message}"

        hint = None
        if funds_in_flight:
            refs = []
            if execution.order_status_identifier:
                refs.append(f"order {execution.order_status_identifier}")
            if signature:
                refs.append(f"signature {signature}")
            hint = (
                "Funds may still be held by the privacy pool. Do not resubmit; run recovery with "
                + (" and ".join(refs) if refs else "your wallet address")
            )
        elif step.transaction_signature:
            hint = f"Run recovery with deposit signature {step.transaction_signature} to check its outcome"

        return FailureReport(
            step=step.kind,
            category=category,
            message=message,
            funds_in_flight=funds_in_flight,
            recovery_hint=hint,
            order_status_identifier=execution.order_status_identifier,
            transaction_signature=signature,
        )
