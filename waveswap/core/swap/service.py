"""
Swap service wiring.

Builds one ResilienceWrapper and hands it to both upstream clients, then
assembles the planner, poller, executor and recovery classifier on top.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

import httpx

from ...config import Settings, settings as default_settings
from ...providers.balance_sync import BalanceSyncNotifier
from ...providers.encifher import BalanceProof, EncifherClient, OrderStatus, SwapQuote
from ...providers.solana import SolanaRpcClient
from ..background import BackgroundTasks
from ..recovery.classifier import RecoveryClassifier
from ..recovery.models import RecoveryAssessment
from ..resilience import EventHook, ResilienceWrapper
from .executor import ExecutorConfig, SwapFlowExecutor
from .models import StepObserver, SwapExecutionResult, SwapFlowPlan, SwapRequest, SwapStore, WalletSigner
from .planner import SwapFlowPlanner
from .poller import OrderStatusPoller


class SwapService:
    """
    Facade over the private swap components.

    Usage:
        async with SwapService() as service:
            plan = await service.plan(request, balances)
            result = await service.execute(plan, signer, on_step_update=print)
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        resilience: Optional[ResilienceWrapper] = None,
        store: Optional[SwapStore] = None,
        on_event: Optional[EventHook] = None,
        rpc_http_client: Optional[httpx.AsyncClient] = None,
        pool_http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = config or default_settings
        self.resilience = resilience or ResilienceWrapper(on_event=on_event)
        self.background = BackgroundTasks()

        read_policy = self.settings.read_policy()
        transactional_policy = self.settings.transactional_policy()

        self.chain = SolanaRpcClient(
            self.resilience,
            self.settings.solana_rpc_url,
            commitment=self.settings.solana_commitment,
            read_policy=read_policy,
            transactional_policy=transactional_policy,
            timeout_s=self.settings.request_timeout_seconds,
            http_client=rpc_http_client,
        )
        self.pool = EncifherClient(
            self.resilience,
            self.settings.encifher_api_key,
            base_url=self.settings.encifher_base_url,
            read_policy=read_policy,
            transactional_policy=transactional_policy,
            timeout_s=self.settings.request_timeout_seconds,
            http_client=pool_http_client,
        )

        self.poller = OrderStatusPoller(self.pool, grace_seconds=self.settings.poll_grace_seconds)
        self.planner = SwapFlowPlanner(self.pool)
        self.executor = SwapFlowExecutor(
            self.pool,
            self.chain,
            self.poller,
            config=ExecutorConfig(
                poll_interval_seconds=self.settings.poll_interval_seconds,
                poll_max_attempts=self.settings.poll_max_attempts,
                confirmation_timeout_seconds=self.settings.chain_confirmation_timeout_seconds,
                confirmation_interval_seconds=self.settings.chain_confirmation_interval_seconds,
            ),
            store=store,
            background=self.background,
        )
        self.classifier = RecoveryClassifier(
            self.chain,
            self.pool,
            expected_tokens=self.settings.recovery_expected_tokens,
            pending_window_seconds=self.settings.recovery_pending_window_seconds,
            support_contact=self.settings.support_contact,
            balance_sync=BalanceSyncNotifier(self.settings.balance_sync_url),
            background=self.background,
        )

    async def __aenter__(self) -> "SwapService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.background.drain(timeout=5.0)
        await self.chain.close()
        await self.pool.close()

    async def quote(self, input_mint: str, output_mint: str, amount_base_units: int) -> SwapQuote:
        return await self.pool.quote(input_mint, output_mint, amount_base_units)

    async def private_balances(self, identity: str, tokens: List[str], proof: BalanceProof) -> Dict[str, Decimal]:
        return await self.planner.private_balances(identity, tokens, proof)

    async def plan(
        self,
        request: SwapRequest,
        current_private_balance: Mapping[str, Decimal],
        withdrawal_requested: bool = True,
    ) -> SwapFlowPlan:
        return await self.planner.plan(request, current_private_balance, withdrawal_requested)

    async def execute(
        self,
        plan: SwapFlowPlan,
        signer: WalletSigner,
        on_step_update: Optional[StepObserver] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        balance_proof: Optional[BalanceProof] = None,
    ) -> SwapExecutionResult:
        return await self.executor.execute(
            plan,
            signer,
            on_step_update,
            cancel_event=cancel_event,
            balance_proof=balance_proof,
        )

    async def order_status(self, order_status_identifier: str) -> OrderStatus:
        """Single status query, no polling."""
        return await self.pool.get_order_status(order_status_identifier)

    async def recover(
        self,
        user_identity: str,
        chain_signature: str,
        declared_type: str = "deposit",
        *,
        submitted_at: Optional[float] = None,
        balance_proof: Optional[BalanceProof] = None,
    ) -> RecoveryAssessment:
        return await self.classifier.classify(
            user_identity,
            chain_signature,
            declared_type,
            submitted_at=submitted_at,
            balance_proof=balance_proof,
        )


# Singleton instance; owns the process-wide breaker table
_swap_service: Optional[SwapService] = None


def get_swap_service() -> SwapService:
    global _swap_service

    if _swap_service is None:
        _swap_service = SwapService()
    return _swap_service
