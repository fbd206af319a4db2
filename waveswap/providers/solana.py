"""
Solana RPC client.

Chain status probe plus the few JSON-RPC calls the swap flow needs
(submission, confirmation and token balances). Every call goes through the
shared ResilienceWrapper under the ``solana-rpc`` endpoint key.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from ..core.resilience import (
    READ_POLICY,
    SOLANA_RPC_ENDPOINT,
    TRANSACTIONAL_POLICY,
    CallPolicy,
    ChainTransactionFailed,
    CircuitOpenError,
    ConfirmationTimeout,
    ResilienceWrapper,
    TransportError,
    UpstreamRejectedError,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

# Node-side conditions that clear up on their own
TRANSIENT_RPC_CODES = {-32004, -32005, -32014}

# Wrapped SOL mint; also stands for native SOL in the token registry
NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"


class ConfirmationLevel(str, Enum):
    """How far a transaction has progressed on-chain."""
    NONE = "none"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


@dataclass
class ChainStatus:
    """Result of a signature status probe.

    ``available`` is False when the probe itself could not reach the ledger;
    in that case ``found=False`` is not a definitive not-found.
    """
    found: bool
    err: Optional[Any] = None
    confirmation_level: ConfirmationLevel = ConfirmationLevel.NONE
    available: bool = True
    raw: Optional[Dict[str, Any]] = None

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation_level in (ConfirmationLevel.CONFIRMED, ConfirmationLevel.FINALIZED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "err": self.err,
            "confirmation_level": self.confirmation_level.value,
            "available": self.available,
        }


class SolanaRpcError(UpstreamRejectedError):
    """JSON-RPC level error returned with an HTTP 200."""

    def __init__(self, method: str, code: Optional[int], message: str):
        super().__init__(
            f"RPC error from {method}: {message}",
            status_code=200,
            endpoint=SOLANA_RPC_ENDPOINT,
        )
        self.rpc_code = code


class SolanaRpcClient:
    """
    Minimal JSON-RPC client for the public ledger.

    Usage:
        client = SolanaRpcClient(resilience, rpc_url="https://api.mainnet-beta.solana.com")

        status = await client.get_confirmation_status(signature)
        if status.available and not status.found:
            ...
    """

    def __init__(
        self,
        resilience: ResilienceWrapper,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        read_policy: CallPolicy = READ_POLICY,
        transactional_policy: CallPolicy = TRANSACTIONAL_POLICY,
        timeout_s: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._resilience = resilience
        self._rpc_url = rpc_url
        self._commitment = commitment
        self._read_policy = read_policy
        self._transactional_policy = transactional_policy
        self._timeout_s = timeout_s
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Single JSON-RPC attempt. Retries belong to the resilience wrapper."""
        client = await self._get_client()

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }

        response = await client.post(
            self._rpc_url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        data = response.json()

        if "error" in data:
            error = data["error"] or {}
            code = error.get("code")
            message = error.get("message", str(error))
            if code in TRANSIENT_RPC_CODES:
                raise TransportError(f"RPC node unavailable ({code}): {message}", endpoint=SOLANA_RPC_ENDPOINT)
            raise SolanaRpcError(method, code, message)

        return data.get("result")

    async def _call(self, method: str, params: List[Any], policy: CallPolicy) -> Any:
        return await self._resilience.call(
            SOLANA_RPC_ENDPOINT,
            lambda: self._rpc_call(method, params),
            policy,
            operation=method,
        )

    async def get_confirmation_status(self, signature: str) -> ChainStatus:
        """
        Look up a signature across the full transaction history.

        Never raises for transport trouble: an exhausted retry budget or an
        open breaker yields ``ChainStatus(found=False, available=False)``.
        """
        try:
            result = await self._call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
                self._read_policy,
            )
        except (UpstreamUnavailable, CircuitOpenError) as e:
            logger.warning(f"Chain status probe unavailable for {signature[:12]}...: {e.category.value}")
            return ChainStatus(found=False, available=False)

        values = (result or {}).get("value") or [None]
        value = values[0]
        if value is None:
            return ChainStatus(found=False)

        status = value.get("confirmationStatus")
        if status == "finalized":
            level = ConfirmationLevel.FINALIZED
        elif status == "confirmed":
            level = ConfirmationLevel.CONFIRMED
        else:
            # "processed" has not reached a voted slot yet
            level = ConfirmationLevel.NONE

        return ChainStatus(found=True, err=value.get("err"), confirmation_level=level, raw=value)

    async def send_transaction(self, serialized_transaction: str) -> str:
        """
        Submit a signed, base64 encoded transaction.

        Returns:
            Transaction signature (base58)
        """
        signature = await self._call(
            "sendTransaction",
            [
                serialized_transaction,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self._commitment,
                },
            ],
            self._transactional_policy,
        )
        logger.info(f"Submitted transaction {str(signature)[:12]}...")
        return signature

    async def wait_for_confirmation(
        self,
        signature: str,
        timeout_s: float = 60.0,
        poll_interval_s: float = 2.0,
    ) -> ChainStatus:
        """
        Wait until a transaction is confirmed or finalized.

        Raises:
            ChainTransactionFailed: the transaction landed with an error
            ConfirmationTimeout: not confirmed within ``timeout_s``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s

        while True:
            status = await self.get_confirmation_status(signature)

            if status.found and status.err is not None:
                raise ChainTransactionFailed(signature, status.err)
            if status.found and status.is_confirmed:
                return status

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConfirmationTimeout(signature, timeout_s)
            await asyncio.sleep(min(poll_interval_s, remaining))

    async def get_token_balance(self, owner: str, mint: str) -> int:
        """
        Sum of all token accounts of ``owner`` for ``mint``.

        For the native SOL mint the wallet's lamports are added to any
        wrapped SOL token accounts.

        Returns:
            Balance in base units
        """
        result = await self._call(
            "getTokenAccountsByOwner",
            [
                owner,
                {"mint": mint},
                {"encoding": "jsonParsed", "commitment": self._commitment},
            ],
            self._read_policy,
        )

        total = 0
        for item in (result or {}).get("value", []):
            parsed = item.get("account", {}).get("data", {}).get("parsed", {})
            amount = parsed.get("info", {}).get("tokenAmount", {}).get("amount", 0)
            total += int(amount)

        if mint == NATIVE_SOL_MINT:
            lamports = await self._call(
                "getBalance",
                [owner, {"commitment": self._commitment}],
                self._read_policy,
            )
            total += int((lamports or {}).get("value", 0))
        return total
