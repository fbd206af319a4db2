"""
Tests for the Swap Flow Executor

Collaborators are mocks; the order status poller is real with a short interval.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from waveswap.core.background import BackgroundTasks
from waveswap.core.resilience import (
    ChainTransactionFailed,
    ErrorCategory,
    UpstreamUnavailable,
    UserRejectedSigning,
)
from waveswap.core.swap import (
    ExecutorConfig,
    OrderStatusPoller,
    StepStatus,
    SwapFlowExecutor,
    SwapFlowPlanner,
    SwapRequest,
    SwapStepKind,
)
from waveswap.core.swap.constants import USDC_MINT, WAVE_MINT
from waveswap.core.swap.executor import NO_PRIVATE_BALANCE
from waveswap.providers.encifher import (
    BalanceProof,
    OrderState,
    OrderStatus,
    PrivateBalance,
    SignedTransaction,
    SwapQuote,
    SwapSubmission,
    UnsignedTransaction,
)
from waveswap.providers.solana import ChainStatus, ConfirmationLevel

USER = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
ORDER_ID = "order-1"

FAST = ExecutorConfig(
    poll_interval_seconds=0.01,
    poll_max_attempts=3,
    confirmation_timeout_seconds=1.0,
    confirmation_interval_seconds=0.01,
)


class FakeSigner:
    """Signs everything unless told to reject a given transaction."""

    def __init__(self, reject=()):
        self.reject = set(reject)
        self.signed = []

    async def sign(self, unsigned):
        if unsigned.serialized in self.reject:
            raise UserRejectedSigning()
        self.signed.append(unsigned.serialized)
        return SignedTransaction(serialized=f"signed-{unsigned.serialized}")


def order(state: OrderState, details=None) -> OrderStatus:
    return OrderStatus(order_status_identifier=ORDER_ID, status=state, details=details)


def make_client(*statuses):
    client = MagicMock()
    client.quote = AsyncMock(
        return_value=SwapQuote(
            input_mint=USDC_MINT,
            output_mint=WAVE_MINT,
            amount_in=1_500_000,
            expected_out_amount=42_000_000,
        )
    )
    client.build_deposit_transaction = AsyncMock(return_value=UnsignedTransaction("DEP"))
    client.build_swap_transaction = AsyncMock(
        return_value=UnsignedTransaction("SWAP", order_details={"inMint": USDC_MINT, "outMint": WAVE_MINT})
    )
    client.execute_signed_swap = AsyncMock(return_value=SwapSubmission(order_status_identifier=ORDER_ID))
    client.get_order_status = AsyncMock(side_effect=list(statuses or [order(OrderState.COMPLETED)]))
    client.build_withdraw_transaction = AsyncMock(return_value=UnsignedTransaction("WD"))
    client.get_private_balance = AsyncMock(return_value={})
    return client


def make_chain():
    chain = MagicMock()
    chain.send_transaction = AsyncMock(side_effect=["dep-sig", "wd-sig"])
    chain.wait_for_confirmation = AsyncMock(
        return_value=ChainStatus(found=True, confirmation_level=ConfirmationLevel.CONFIRMED)
    )
    chain.get_token_balance = AsyncMock(return_value=42_000_000)
    return chain


def make_executor(client, chain, store=None, background=None):
    poller = OrderStatusPoller(client, grace_seconds=0.5)
    return SwapFlowExecutor(client, chain, poller, config=FAST, store=store, background=background)


async def make_plan(client, private_usdc="0", withdrawal=True):
    request = SwapRequest(input_mint=USDC_MINT, output_mint=WAVE_MINT, input_amount="1.5", user_identity=USER)
    planner = SwapFlowPlanner(client)
    return await planner.plan(request, {USDC_MINT: Decimal(private_usdc)}, withdrawal_requested=withdrawal)


# =============================================================================
# Happy Path Tests
# =============================================================================

class TestHappyPath:
    """Tests for successful execution."""

    @pytest.mark.asyncio
    async def test_full_flow_runs_steps_in_order(self):
        client, chain = make_client(), make_chain()
        plan = await make_plan(client)
        updates = []

        result = await make_executor(client, chain).execute(plan, FakeSigner(), on_step_update=updates.append)

        assert result.success is True
        assert result.order_status_identifier == ORDER_ID
        assert result.transaction_signatures == ["dep-sig", "wd-sig"]
        assert result.final_balance == Decimal("0.042")
        assert all(step.status == StepStatus.COMPLETED for step in plan.steps)

        started = [u.kind for u in updates if u.status == StepStatus.IN_PROGRESS and u.detail is None]
        assert started == [
            SwapStepKind.DEPOSIT,
            SwapStepKind.SWAP,
            SwapStepKind.STATUS_POLL,
            SwapStepKind.WITHDRAW,
        ]

        # No step starts before the previous one finished
        executed = [step for step in plan.steps if step.kind is not SwapStepKind.QUOTE]
        for previous, current in zip(executed, executed[1:]):
            assert current.started_at >= previous.finished_at

    @pytest.mark.asyncio
    async def test_swap_uses_planned_quote(self):
        """Execution never re-quotes."""
        client, chain = make_client(), make_chain()
        plan = await make_plan(client, private_usdc="2")

        await make_executor(client, chain).execute(plan, FakeSigner())

        client.quote.assert_awaited_once()
        client.build_swap_transaction.assert_awaited_once_with(USDC_MINT, WAVE_MINT, 1_500_000, USER, USER)
        client.build_deposit_transaction.assert_not_awaited()
        signed, details = client.execute_signed_swap.await_args.args
        assert signed.serialized == "signed-SWAP"
        assert details == {"inMint": USDC_MINT, "outMint": WAVE_MINT}

    @pytest.mark.asyncio
    async def test_observers_receive_snapshots(self):
        client, chain = make_client(), make_chain()
        plan = await make_plan(client, private_usdc="2", withdrawal=False)
        updates = []

        await make_executor(client, chain).execute(plan, FakeSigner(), on_step_update=updates.append)

        assert updates
        assert all(update is not step for update in updates for step in plan.steps)
        poll_details = [u.detail for u in updates if u.kind is SwapStepKind.STATUS_POLL and u.detail]
        assert poll_details[0] == "Poll 1/3: completed"

    @pytest.mark.asyncio
    async def test_observer_errors_do_not_stop_execution(self):
        client, chain = make_client(), make_chain()
        plan = await make_plan(client, private_usdc="2")

        def broken(_step):
            raise RuntimeError("render failed")

        result = await make_executor(client, chain).execute(plan, FakeSigner(), on_step_update=broken)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_balance_refresh_failure_keeps_success(self):
        client, chain = make_client(), make_chain()
        chain.get_token_balance.side_effect = UpstreamUnavailable("solana-rpc", 5)
        plan = await make_plan(client, private_usdc="2")

        result = await make_executor(client, chain).execute(plan, FakeSigner())

        assert result.success is True
        assert result.final_balance is None

    @pytest.mark.asyncio
    async def test_no_withdraw_skips_balance_refresh(self):
        client, chain = make_client(), make_chain()
        plan = await make_plan(client, private_usdc="2", withdrawal=False)

        result = await make_executor(client, chain).execute(plan, FakeSigner())

        assert result.success is True
        assert result.final_balance is None
        chain.get_token_balance.assert_not_awaited()


# =============================================================================
# Withdraw Amount Tests
# =============================================================================

class TestWithdraw:
    """Tests for withdraw sizing against the private balance."""

    @pytest.mark.asyncio
    async def test_zero_private_balance_completes_without_transaction(self):
        client, chain = make_client(), make_chain()
        client.get_private_balance.return_value = {WAVE_MINT: PrivateBalance(mint=WAVE_MINT, balance=0)}
        plan = await make_plan(client, private_usdc="2")

        result = await make_executor(client, chain).execute(plan, FakeSigner(), balance_proof=BalanceProof("s", "m"))

        withdraw = plan.get_step(SwapStepKind.WITHDRAW)
        assert result.success is True
        assert withdraw.status == StepStatus.COMPLETED
        assert withdraw.detail == NO_PRIVATE_BALANCE
        client.build_withdraw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_withdraws_smaller_of_balance_and_quote(self):
        client, chain = make_client(), make_chain()
        client.get_private_balance.return_value = {WAVE_MINT: PrivateBalance(mint=WAVE_MINT, balance=40_000_000)}
        plan = await make_plan(client, private_usdc="2")

        await make_executor(client, chain).execute(plan, FakeSigner(), balance_proof=BalanceProof("s", "m"))

        client.build_withdraw_transaction.assert_awaited_once_with(WAVE_MINT, 9, 40_000_000, USER)

    @pytest.mark.asyncio
    async def test_without_proof_withdraws_quoted_amount(self):
        client, chain = make_client(), make_chain()
        plan = await make_plan(client, private_usdc="2")

        await make_executor(client, chain).execute(plan, FakeSigner())

        client.get_private_balance.assert_not_awaited()
        client.build_withdraw_transaction.assert_awaited_once_with(WAVE_MINT, 9, 42_000_000, USER)


# =============================================================================
# Failure Tests
# =============================================================================

class TestFailures:
    """Tests for halting and failure reports."""

    @pytest.mark.asyncio
    async def test_settlement_failure_halts_before_withdraw(self):
        """Pool reports failed on the second poll: halt at StatusPoll, never withdraw."""
        client, chain = make_client(order(OrderState.PENDING), order(OrderState.FAILED, "slippage")), make_chain()
        plan = await make_plan(client, private_usdc="2")

        result = await make_executor(client, chain).execute(plan, FakeSigner())

        assert result.success is False
        assert result.failure.step == SwapStepKind.STATUS_POLL
        assert result.failure.category == ErrorCategory.SETTLEMENT_FAILED
        assert result.failure.funds_in_flight is True
        assert ORDER_ID in result.failure.recovery_hint
        assert result.order_status_identifier == ORDER_ID
        assert plan.get_step(SwapStepKind.WITHDRAW).status == StepStatus.PENDING
        assert plan.get_step(SwapStepKind.STATUS_POLL).status == StepStatus.FAILED
        client.build_withdraw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_polling_timeout_points_to_recovery(self):
        client = make_client(*[order(OrderState.PENDING)] * 3)
        chain = make_chain()
        plan = await make_plan(client, private_usdc="2")

        result = await make_executor(client, chain).execute(plan, FakeSigner())

        assert result.failure.category == ErrorCategory.POLLING_TIMEOUT
        assert result.failure.message.startswith("Status unknown, use recovery instead of resubmitting.")
        assert result.failure.funds_in_flight is True
        assert "Do not resubmit" in result.failure.recovery_hint

    @pytest.mark.asyncio
    async def test_user_rejects_swap_signing(self):
        client, chain = make_client(), make_chain()
        plan = await make_plan(client, private_usdc="2")

        result = await make_executor(client, chain).execute(plan, FakeSigner(reject={"SWAP"}))

        assert result.success is False
        assert result.failure.step == SwapStepKind.SWAP
        assert result.failure.category == ErrorCategory.USER_REJECTED
        assert result.order_status_identifier is None
        client.execute_signed_swap.assert_not_awaited()
        assert plan.get_step(SwapStepKind.STATUS_POLL).status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_deposit_chain_failure_is_not_in_flight(self):
        client, chain = make_client(), make_chain()
        chain.wait_for_confirmation.side_effect = ChainTransactionFailed("dep-sig", {"InstructionError": [0, 1]})
        plan = await make_plan(client)

        result = await make_executor(client, chain).execute(plan, FakeSigner())

        assert result.failure.step == SwapStepKind.DEPOSIT
        assert result.failure.category == ErrorCategory.CHAIN_FAILED
        assert result.failure.funds_in_flight is False
        assert result.failure.transaction_signature == "dep-sig"
        assert "dep-sig" in result.failure.recovery_hint
        client.build_swap_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_unknown_category(self):
        client, chain = make_client(), make_chain()
        client.build_swap_transaction.side_effect = KeyError("serializedTxn")
        plan = await make_plan(client, private_usdc="2")

        result = await make_executor(client, chain).execute(plan, FakeSigner())

        assert result.failure.step == SwapStepKind.SWAP
        assert result.failure.category == ErrorCategory.UNKNOWN

    @pytest.mark.asyncio
    async def test_cancel_event_stops_polling(self):
        client = make_client(*[order(OrderState.PENDING)] * 3)
        chain = make_chain()
        plan = await make_plan(client, private_usdc="2")
        cancel = asyncio.Event()
        cancel.set()

        result = await make_executor(client, chain).execute(plan, FakeSigner(), cancel_event=cancel)

        assert result.failure.step == SwapStepKind.STATUS_POLL
        assert result.failure.category == ErrorCategory.POLLING_CANCELLED
        assert result.failure.funds_in_flight is True


# =============================================================================
# Persistence Tests
# =============================================================================

class TestPersistence:
    """Tests for the optional swap store."""

    @pytest.mark.asyncio
    async def test_record_written_once_swap_is_accepted(self):
        client, chain = make_client(), make_chain()
        store = MagicMock()
        store.create = AsyncMock(return_value="record-1")
        background = BackgroundTasks()
        plan = await make_plan(client, private_usdc="2")

        await make_executor(client, chain, store=store, background=background).execute(plan, FakeSigner())
        await background.drain(timeout=1.0)

        store.create.assert_awaited_once()
        record = store.create.await_args.args[0]
        assert record.order_status_identifier == ORDER_ID
        assert record.user_identity == USER
        assert record.expected_output_amount == "0.042"

    @pytest.mark.asyncio
    async def test_store_failure_does_not_fail_swap(self):
        client, chain = make_client(), make_chain()
        store = MagicMock()
        store.create = AsyncMock(side_effect=RuntimeError("db down"))
        background = BackgroundTasks()
        plan = await make_plan(client, private_usdc="2")

        result = await make_executor(client, chain, store=store, background=background).execute(
            plan, FakeSigner()
        )
        await background.drain(timeout=1.0)

        assert result.success is True
        assert background.pending == 0


# =============================================================================
# Re-run and Cancellation Tests
# =============================================================================

class TestPlanReuse:
    """Tests for executing the same plan twice and for task cancellation."""

    @pytest.mark.asyncio
    async def test_retry_after_rejection_needs_new_plan(self):
        client, chain = make_client(), make_chain()
        plan = await make_plan(client, private_usdc="2")
        executor = make_executor(client, chain)

        first = await executor.execute(plan, FakeSigner(reject={"SWAP"}))
        second = await executor.execute(plan, FakeSigner())

        assert first.failure.category == ErrorCategory.USER_REJECTED
        assert second.success is False
        assert second.failure.step == SwapStepKind.SWAP
        assert second.failure.category == ErrorCategory.INVALID_TRANSITION
        assert second.failure.funds_in_flight is False
        assert "new plan" in second.failure.recovery_hint
        assert client.build_swap_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_rerun_after_submitted_swap_points_to_recovery(self):
        client = make_client(order(OrderState.PENDING), order(OrderState.FAILED, "slippage"))
        chain = make_chain()
        plan = await make_plan(client, private_usdc="2")
        executor = make_executor(client, chain)

        await executor.execute(plan, FakeSigner())
        second = await executor.execute(plan, FakeSigner())

        assert second.failure.category == ErrorCategory.INVALID_TRANSITION
        assert second.failure.funds_in_flight is True
        assert second.order_status_identifier == ORDER_ID
        assert ORDER_ID in second.failure.recovery_hint
        client.execute_signed_swap.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_task_cancellation_fails_current_step(self):
        client, chain = make_client(), make_chain()
        started = asyncio.Event()

        async def hang(_order_id):
            started.set()
            await asyncio.sleep(30)

        client.get_order_status = AsyncMock(side_effect=hang)
        plan = await make_plan(client, private_usdc="2")
        updates = []

        task = asyncio.create_task(
            make_executor(client, chain).execute(plan, FakeSigner(), on_step_update=updates.append)
        )
        await asyncio.wait_for(started.wait(), timeout=1.0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        poll = plan.get_step(SwapStepKind.STATUS_POLL)
        assert poll.status == StepStatus.FAILED
        assert poll.error_category == ErrorCategory.POLLING_CANCELLED
        assert updates[-1].kind == SwapStepKind.STATUS_POLL
        assert updates[-1].status == StepStatus.FAILED
        assert plan.get_step(SwapStepKind.WITHDRAW).status == StepStatus.PENDING
