"""
Recovery Classifier

Read-only post-hoc classification of a deposit or withdrawal that did not
finish cleanly. Never submits anything; repeated calls against unchanged
upstream state give the same action.
"""

import logging
import time
from typing import Callable, List, Optional, Sequence

from ...providers.balance_sync import BalanceSyncNotifier
from ...providers.encifher import BalanceProof, EncifherClient
from ...providers.solana import ChainStatus, SolanaRpcClient
from ..background import BackgroundTasks
from ..resilience.errors import ValidationError
from ..swap.constants import TOKEN_REGISTRY, USDC_MINT, WAVE_MINT
from .models import DeclaredType, RecoveryAction, RecoveryAssessment

DEFAULT_EXPECTED_TOKENS = [WAVE_MINT, USDC_MINT]


def _label(declared: DeclaredType) -> str:
    return "Withdrawal" if declared is DeclaredType.WITHDRAWAL else "Deposit"


def _symbol(mint: str) -> str:
    metadata = TOKEN_REGISTRY.get(mint)
    return metadata.symbol if metadata else f"{mint[:4]}...{mint[-4:]}"


def next_steps_for(action: RecoveryAction, declared: DeclaredType, signature: str) -> List[str]:
    """Ordered user guidance per outcome."""
    kind = declared.value

    if action is RecoveryAction.NOT_FOUND:
        return [
            "Verify the transaction signature is correct",
            "Check that you copied the full signature",
            f"Try the {kind} again with a fresh transaction",
        ]
    if action is RecoveryAction.CHAIN_FAILED:
        if declared is DeclaredType.WITHDRAWAL:
            return [
                "Check your confidential balances; the tokens should still be available",
                "The failed withdrawal transaction fee is consumed",
                "Try withdrawing again when network conditions improve",
                "Contact support if the tokens do not appear in your confidential balance",
            ]
        return [
            "Check your wallet balance; the deposited funds never left it",
            "The failed transaction fee is consumed",
            "Try the swap again when network conditions improve",
        ]
    if action is RecoveryAction.PENDING_CONFIRMATION:
        return [
            "Wait for network confirmation",
            "Monitor the transaction on Solana Explorer",
            f"If still pending after 5 minutes, run recovery again for this {kind}",
        ]
    if action is RecoveryAction.CONFIRMED_NO_PRIVATE_FUNDS_IMPLIED:
        return [
            "Check your wallet for the withdrawn tokens",
            "The tokens should appear within a few minutes",
            "Verify the final balance in your wallet",
            "Contact support if the tokens do not appear after 10 minutes",
        ]
    if action is RecoveryAction.CONFIRMED_PRIVATE_FUNDS_AVAILABLE:
        return [
            "Go to the Withdraw tab",
            "Your confidential tokens are available for withdrawal",
            "Withdraw them back to your wallet, or retry the swap from your private balance",
            "If the tokens are not listed, refresh and check again",
        ]
    if action is RecoveryAction.CONFIRMED_NO_PRIVATE_FUNDS:
        return [
            "Check your wallet balance for swapped or returned tokens",
            "Wait a few minutes and run recovery again in case the pool has not indexed the deposit",
            f"If nothing appears, contact support with the deposit signature {signature}",
        ]
    return [
        f"Contact support with your {kind} signature",
        "Do not attempt additional transactions with the same funds",
        f"Save this transaction signature for support: {signature}",
    ]


class RecoveryClassifier:
    """
    Assigns a RecoveryAction to a stalled transaction.

    Precedence: probe unavailable, not found, on-chain error, confirmed
    withdrawal, confirmed deposit (private funds check), still pending.
    Any failure while classifying yields ``unable_to_classify``.
    """

    def __init__(
        self,
        chain: SolanaRpcClient,
        client: EncifherClient,
        *,
        expected_tokens: Optional[Sequence[str]] = None,
        pending_window_seconds: float = 300.0,
        support_contact: Optional[str] = None,
        balance_sync: Optional[BalanceSyncNotifier] = None,
        background: Optional[BackgroundTasks] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.chain = chain
        self.client = client
        self.expected_tokens = list(expected_tokens or DEFAULT_EXPECTED_TOKENS)
        self.pending_window_seconds = pending_window_seconds
        self.support_contact = support_contact
        self.balance_sync = balance_sync
        self.background = background or BackgroundTasks()
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

    async def classify(
        self,
        user_identity: str,
        chain_signature: str,
        declared_type: str = DeclaredType.DEPOSIT.value,
        *,
        expected_tokens: Optional[Sequence[str]] = None,
        submitted_at: Optional[float] = None,
        balance_proof: Optional[BalanceProof] = None,
    ) -> RecoveryAssessment:
        if not user_identity or not chain_signature:
            raise ValidationError("user identity and transaction signature are required")
        try:
            declared = DeclaredType(declared_type)
        except ValueError:
            raise ValidationError(f"Unknown transaction type: {declared_type!r}") from None

        tokens = list(expected_tokens or self.expected_tokens)

        try:
            return await self._classify(user_identity, chain_signature, declared, tokens, submitted_at, balance_proof)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Recovery classification failed for {chain_signature[:12]}...: {e}")
            return self._assessment(
                RecoveryAction.UNABLE_TO_CLASSIFY,
                f"{_label(declared)} status could not be determined automatically ({e}). "
                f"Contact support and keep the transaction signature {chain_signature}.",
                user_identity,
                chain_signature,
                declared,
            )

    async def _classify(
        self,
        user_identity: str,
        signature: str,
        declared: DeclaredType,
        tokens: List[str],
        submitted_at: Optional[float],
        balance_proof: Optional[BalanceProof],
    ) -> RecoveryAssessment:
        status = await self.chain.get_confirmation_status(signature)
        label = _label(declared)

        if not status.available:
            return self._assessment(
                RecoveryAction.UNABLE_TO_CLASSIFY,
                f"The ledger could not be reached to check this {declared.value}. "
                f"Contact support if this persists and keep the signature {signature}.",
                user_identity,
                signature,
                declared,
                status,
            )

        if not status.found:
            if submitted_at is not None and (self._clock() - submitted_at) < self.pending_window_seconds:
                return self._assessment(
                    RecoveryAction.PENDING_CONFIRMATION,
                    f"{label} transaction was submitted recently and is not visible on-chain yet. "
                    "Please wait a few more minutes.",
                    user_identity,
                    signature,
                    declared,
                    status,
                )
            return self._assessment(
                RecoveryAction.NOT_FOUND,
                f"{label} transaction not found on-chain. Please verify the transaction signature.",
                user_identity,
                signature,
                declared,
                status,
            )

        if status.err is not None:
            if declared is DeclaredType.WITHDRAWAL:
                message = (
                    "Withdrawal transaction failed. Your confidential balance should be intact; "
                    "you can try withdrawing again."
                )
            else:
                message = "Deposit transaction failed on-chain. The funds were not moved into the privacy pool."
            return self._assessment(RecoveryAction.CHAIN_FAILED, message, user_identity, signature, declared, status)

        if status.is_confirmed and declared is DeclaredType.WITHDRAWAL:
            return self._assessment(
                RecoveryAction.CONFIRMED_NO_PRIVATE_FUNDS_IMPLIED,
                "Withdrawal was confirmed. The tokens are on the public chain and should appear in your wallet shortly.",
                user_identity,
                signature,
                declared,
                status,
            )

        if status.is_confirmed:
            found = await self._private_tokens(user_identity, tokens, balance_proof)
            if found:
                symbols = " + ".join(_symbol(mint) for mint in found)
                self._schedule_balance_sync(user_identity)
                return self._assessment(
                    RecoveryAction.CONFIRMED_PRIVATE_FUNDS_AVAILABLE,
                    f"Deposit succeeded and confidential {symbols} was found in your private balance. "
                    "The swap may not have executed; retry it or withdraw the tokens as they are.",
                    user_identity,
                    signature,
                    declared,
                    status,
                    found,
                )
            return self._assessment(
                RecoveryAction.CONFIRMED_NO_PRIVATE_FUNDS,
                "Deposit is confirmed on-chain but no matching private balance was found. Either the swap "
                "already completed and the funds went back to your wallet, or the pool has not indexed the "
                "deposit yet. Check your wallet balance before trying again.",
                user_identity,
                signature,
                declared,
                status,
            )

        return self._assessment(
            RecoveryAction.PENDING_CONFIRMATION,
            f"{label} transaction is still pending confirmation. Please wait a few more minutes.",
            user_identity,
            signature,
            declared,
            status,
        )

    async def _private_tokens(
        self,
        user_identity: str,
        tokens: List[str],
        balance_proof: Optional[BalanceProof],
    ) -> List[str]:
        """Expected mints with private funds, in expected-token order."""
        if balance_proof is not None:
            balances = await self.client.get_private_balance(user_identity, tokens, balance_proof)
            return [mint for mint in tokens if mint in balances and balances[mint].balance > 0]

        known = {entry.mint for entry in await self.client.get_known_token_mints(user_identity)}
        return [mint for mint in tokens if mint in known]

    def _schedule_balance_sync(self, user_identity: str) -> None:
        if self.balance_sync is None or not self.balance_sync.enabled:
            return
        self.background.spawn(
            self.balance_sync.notify(user_identity),
            name=f"balance-sync-{user_identity[:8]}",
        )

    def _assessment(
        self,
        action: RecoveryAction,
        message: str,
        user_identity: str,
        signature: str,
        declared: DeclaredType,
        status: Optional[ChainStatus] = None,
        tokens_found: Optional[List[str]] = None,
    ) -> RecoveryAssessment:
        self.logger.info(f"Recovery for {signature[:12]}... classified as {action.value}")
        return RecoveryAssessment(
            action=action,
            message=message,
            next_steps=next_steps_for(action, declared, signature),
            signature=signature,
            declared_type=declared,
            user_identity=user_identity,
            chain_status=status.to_dict() if status is not None else None,
            tokens_found=list(tokens_found or []),
            support_contact=self.support_contact,
        )
