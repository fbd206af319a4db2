"""Async client for the Encifher privacy-pool API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from ..core.resilience import (
    PRIVACY_POOL_ENDPOINT,
    READ_POLICY,
    TRANSACTIONAL_POLICY,
    CallPolicy,
    ConfigurationError,
    QuoteUnavailable,
    ResilienceWrapper,
    UpstreamRejectedError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://authority.encrypt.trade/api/v1"


@dataclass(frozen=True)
class UnsignedTransaction:
    """Base64 serialized transaction awaiting a wallet signature."""
    serialized: str
    description: str = ""
    order_details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignedTransaction:
    """Base64 serialized transaction carrying the wallet signature."""
    serialized: str
    signature: Optional[str] = None


@dataclass
class SwapQuote:
    """Quote returned by the pool. Amounts are in base units."""
    input_mint: str
    output_mint: str
    amount_in: int
    expected_out_amount: int
    price_impact: Optional[float] = None
    route: Optional[Any] = None
    fetched_at: float = field(default_factory=time.time)


@dataclass
class SwapSubmission:
    """Acknowledgement that the pool has taken custody of a swap intent."""
    order_status_identifier: str
    timestamp: Optional[int] = None


class OrderState(str, Enum):
    """Settlement state of a submitted order."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class OrderStatus:
    order_status_identifier: str
    status: OrderState
    details: Optional[Any] = None
    timestamp: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderState.COMPLETED, OrderState.FAILED)


@dataclass(frozen=True)
class BalanceProof:
    """Signed-message proof required for authenticated balance reads."""
    signature: str
    message: str


@dataclass
class PrivateBalance:
    mint: str
    balance: int
    visible: bool = True


@dataclass
class KnownTokenMint:
    mint: str
    symbol: Optional[str] = None
    decimals: Optional[int] = None


_COMPLETED_STATES = {"completed", "complete", "success", "successful", "executed", "settled"}
_FAILED_STATES = {"failed", "failure", "error", "rejected", "cancelled", "expired"}


def _parse_order_state(raw: Any) -> OrderState:
    value = str(raw or "").strip().lower()
    if value in _COMPLETED_STATES:
        return OrderState.COMPLETED
    if value in _FAILED_STATES:
        return OrderState.FAILED
    return OrderState.PENDING


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _extract_transaction(data: Dict[str, Any]) -> str:
    serialized = _first_present(data, "serializedTxn", "transaction", "tx", "serializedTransaction")
    if not serialized:
        raise UpstreamRejectedError(
            "Privacy pool returned no transaction to sign",
            status_code=200,
            endpoint=PRIVACY_POOL_ENDPOINT,
        )
    return serialized


class EncifherClient:
    """
    Thin typed wrapper around the Encifher HTTP API.

    Every request carries the API key both as a bearer token and as
    ``x-api-key``. Builds, quotes and reads use the read policy; the single
    custody-transferring call (``execute_signed_swap``) uses the
    transactional policy.
    """

    def __init__(
        self,
        resilience: ResilienceWrapper,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        read_policy: CallPolicy = READ_POLICY,
        transactional_policy: CallPolicy = TRANSACTIONAL_POLICY,
        timeout_s: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._resilience = resilience
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._read_policy = read_policy
        self._transactional_policy = transactional_policy
        self.timeout_s = timeout_s
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise ConfigurationError("Encifher API key is not configured (set ENCIFHER_API_KEY)")
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "authorization": f"Bearer {self._api_key}",
            "x-api-key": self._api_key,
        }

    async def _request(
        self,
        method: str,
        path: str,
        headers: Dict[str, str],
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        client = await self._get_client()
        response = await client.request(method, f"{self.base_url}{path}", json=json, headers=headers)
        response.raise_for_status()
        return response.json()

    async def _call(
        self,
        method: str,
        path: str,
        policy: CallPolicy,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        # Key check happens before the wrapper so a missing key never reaches the network
        headers = self._headers()
        return await self._resilience.call(
            PRIVACY_POOL_ENDPOINT,
            lambda: self._request(method, path, headers, json=json),
            policy,
            operation=path,
        )

    async def quote(self, input_mint: str, output_mint: str, amount_in_base_units: int) -> SwapQuote:
        """Fetch a swap quote.

        Raises:
            QuoteUnavailable: insufficient liquidity or unsupported pair
        """
        payload = {
            "inMint": input_mint,
            "outMint": output_mint,
            "amountIn": str(amount_in_base_units),
        }
        try:
            data = await self._call("POST", "/swap/quote", self._read_policy, json=payload)
        except UpstreamRejectedError as e:
            raise QuoteUnavailable(f"No quote for {input_mint} -> {output_mint}: {e.message}") from e

        data = data or {}
        raw_out = _first_present(data, "amountOut", "outAmount", "expectedOutAmount")
        try:
            expected_out = int(str(raw_out))
        except (TypeError, ValueError):
            expected_out = 0
        if expected_out <= 0:
            raise QuoteUnavailable(f"No liquidity for {input_mint} -> {output_mint}")

        price_impact = data.get("priceImpact")
        return SwapQuote(
            input_mint=input_mint,
            output_mint=output_mint,
            amount_in=amount_in_base_units,
            expected_out_amount=expected_out,
            price_impact=float(price_impact) if price_impact is not None else None,
            route=_first_present(data, "router", "route"),
        )

    async def build_deposit_transaction(
        self,
        token_mint: str,
        decimals: int,
        amount_base_units: int,
        depositor: str,
    ) -> UnsignedTransaction:
        """Build the transaction that moves public tokens into the pool."""
        payload = {
            "token": {"tokenMintAddress": token_mint, "decimals": decimals},
            "depositor": depositor,
            "amount": str(amount_base_units),
        }
        data = await self._call("POST", "/prepare-wrap-tx", self._read_policy, json=payload)
        return UnsignedTransaction(serialized=_extract_transaction(data or {}), description="deposit")

    async def build_swap_transaction(
        self,
        input_mint: str,
        output_mint: str,
        amount_in_base_units: int,
        sender: str,
        receiver: str,
    ) -> UnsignedTransaction:
        """Build the private swap transaction. The returned order details are
        echoed back to ``execute_signed_swap``."""
        order_details = {
            "inMint": input_mint,
            "outMint": output_mint,
            "amountIn": str(amount_in_base_units),
            "senderPubkey": sender,
            "receiverPubkey": receiver,
        }
        data = await self._call("POST", "/swap/prepare", self._read_policy, json=order_details)
        data = data or {}
        details = {**order_details, **(data.get("orderDetails") or {})}
        return UnsignedTransaction(
            serialized=_extract_transaction(data),
            description="swap",
            order_details=details,
        )

    async def execute_signed_swap(
        self,
        signed_transaction: SignedTransaction,
        order_details: Dict[str, Any],
    ) -> SwapSubmission:
        """Hand a signed swap to the pool.

        Once this returns, the swap is in flight; the identifier must be kept
        for status polling and recovery.
        """
        payload = {
            "serializedTxn": signed_transaction.serialized,
            "orderDetails": {"message": "", **order_details},
        }
        data = await self._call("POST", "/swap/execute", self._transactional_policy, json=payload) or {}

        identifier = data.get("orderStatusIdentifier")
        if not identifier:
            raise UpstreamRejectedError(
                "Privacy pool accepted the swap without an order identifier",
                status_code=200,
                endpoint=PRIVACY_POOL_ENDPOINT,
            )
        logger.info(f"Swap accepted by privacy pool, order {identifier}")
        return SwapSubmission(order_status_identifier=identifier, timestamp=data.get("timestamp"))

    async def get_order_status(self, order_status_identifier: str) -> OrderStatus:
        data = await self._call(
            "POST",
            "/order-status",
            self._read_policy,
            json={"orderStatusIdentifier": order_status_identifier},
        ) or {}

        # Some deployments nest the payload under "status"
        if isinstance(data.get("status"), dict):
            data = data["status"]

        return OrderStatus(
            order_status_identifier=data.get("orderStatusIdentifier") or order_status_identifier,
            status=_parse_order_state(data.get("status")),
            details=data.get("details"),
            timestamp=data.get("timestamp"),
        )

    async def build_withdraw_transaction(
        self,
        token_mint: str,
        decimals: int,
        amount_base_units: int,
        withdrawer: str,
    ) -> UnsignedTransaction:
        """Build the transaction that moves a private balance back to the wallet."""
        payload = {
            "token": {"tokenMintAddress": token_mint, "decimals": decimals},
            "withdrawer": withdrawer,
            "amount": str(amount_base_units),
        }
        data = await self._call("POST", "/prepare-unwrap-tx", self._read_policy, json=payload)
        return UnsignedTransaction(serialized=_extract_transaction(data or {}), description="withdraw")

    async def get_message_to_sign(self) -> str:
        """Payload the wallet signs to produce a BalanceProof."""
        data = await self._call("GET", "/user/message", self._read_policy) or {}
        if isinstance(data, str):
            return data
        return str(_first_present(data, "msgPayload", "message") or "")

    async def get_private_balance(
        self,
        identity: str,
        tokens: List[str],
        proof: BalanceProof,
    ) -> Dict[str, PrivateBalance]:
        """Authenticated private balances keyed by mint. Missing mints are absent."""
        payload = {
            "userPubkey": identity,
            "tokens": list(tokens),
            "signature": proof.signature,
            "messageHash": proof.message,
        }
        data = await self._call("POST", "/user/balance", self._read_policy, json=payload) or {}

        if isinstance(data, dict) and "balances" in data:
            data = data["balances"]

        entries: List[Dict[str, Any]] = []
        if isinstance(data, dict):
            for mint, value in data.items():
                entry = dict(value) if isinstance(value, dict) else {"balance": value}
                entry.setdefault("mint", mint)
                entries.append(entry)
        else:
            entries = list(data or [])

        balances: Dict[str, PrivateBalance] = {}
        for entry in entries:
            mint = entry.get("mint") or entry.get("token")
            if not mint or (tokens and mint not in tokens):
                continue
            try:
                amount = int(str(_first_present(entry, "balance", "amount") or 0))
            except ValueError:
                logger.warning(f"Ignoring unparseable private balance for {mint}")
                continue
            balances[mint] = PrivateBalance(mint=mint, balance=amount, visible=entry.get("visible", True))
        return balances

    async def get_known_token_mints(self, identity: str) -> List[KnownTokenMint]:
        """Mints the pool has ever credited to ``identity``. Needs no proof."""
        data = await self._call(
            "POST",
            "/user/token-mints",
            self._read_policy,
            json={"userPubkey": identity},
        ) or []

        if isinstance(data, dict):
            data = data.get("mints") or data.get("tokenMints") or []

        mints: List[KnownTokenMint] = []
        for entry in data:
            if isinstance(entry, str):
                mints.append(KnownTokenMint(mint=entry))
            elif isinstance(entry, dict) and entry.get("mint"):
                mints.append(
                    KnownTokenMint(
                        mint=entry["mint"],
                        symbol=entry.get("symbol"),
                        decimals=entry.get("decimals"),
                    )
                )
        return mints
