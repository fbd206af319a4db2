"""
Tests for the Encifher privacy-pool client

Transport-level call counting goes through httpx.MockTransport.
"""

import json

import httpx
import pytest

from waveswap.core.resilience import (
    CallPolicy,
    CircuitOpenError,
    ConfigurationError,
    QuoteUnavailable,
    ResilienceWrapper,
    UpstreamRejectedError,
    UpstreamUnavailable,
)
from waveswap.providers.encifher import (
    BalanceProof,
    EncifherClient,
    OrderState,
    SignedTransaction,
)

POLICY = CallPolicy(max_attempts=1, base_delay_seconds=0.0, timeout_seconds=1.0, failure_threshold=5)

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WAVE = "4AGxpKxYnw7g1ofvYDs5Jq2a1ek5kB9jS2NTUaippump"


async def no_sleep(_delay):
    return None


class Recorder:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)

    def body(self, index=0):
        return json.loads(self.requests[index].content)


def make_client(recorder, api_key="test-key", policy=POLICY):
    wrapper = ResilienceWrapper(sleep=no_sleep)
    client = EncifherClient(
        wrapper,
        api_key,
        base_url="https://pool.example/api/v1",
        read_policy=policy,
        transactional_policy=policy,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
    )
    return client, wrapper


# =============================================================================
# Authentication Tests
# =============================================================================

class TestAuthentication:
    """Tests for API key handling."""

    @pytest.mark.asyncio
    async def test_every_request_carries_both_headers(self):
        recorder = Recorder(httpx.Response(200, json={"amountOut": "10"}))
        client, _ = make_client(recorder)

        await client.quote(USDC, WAVE, 1_500_000)

        request = recorder.requests[0]
        assert request.headers["authorization"] == "Bearer test-key"
        assert request.headers["x-api-key"] == "test-key"
        assert str(request.url) == "https://pool.example/api/v1/swap/quote"

    @pytest.mark.asyncio
    async def test_missing_key_is_configuration_error(self):
        recorder = Recorder(httpx.Response(200, json={}))
        client, wrapper = make_client(recorder, api_key="")

        with pytest.raises(ConfigurationError):
            await client.get_order_status("order-1")

        assert recorder.requests == []
        assert wrapper.snapshot("privacy-pool").consecutive_failures == 0


# =============================================================================
# Quote Tests
# =============================================================================

class TestQuote:
    """Tests for quote parsing and failure mapping."""

    @pytest.mark.asyncio
    async def test_parses_quote(self):
        recorder = Recorder(
            httpx.Response(200, json={"expectedOutAmount": "42000000", "priceImpact": "0.12", "router": "pool-a"})
        )
        client, _ = make_client(recorder)

        quote = await client.quote(USDC, WAVE, 1_500_000)

        assert quote.expected_out_amount == 42_000_000
        assert quote.price_impact == pytest.approx(0.12)
        assert quote.route == "pool-a"
        assert recorder.body() == {"inMint": USDC, "outMint": WAVE, "amountIn": "1500000"}

    @pytest.mark.asyncio
    async def test_accepts_alternate_output_field(self):
        client, _ = make_client(Recorder(httpx.Response(200, json={"outAmount": 7})))
        quote = await client.quote(USDC, WAVE, 1)
        assert quote.expected_out_amount == 7

    @pytest.mark.asyncio
    async def test_client_error_is_quote_unavailable(self):
        client, wrapper = make_client(Recorder(httpx.Response(400, json={"error": "Insufficient liquidity"})))

        with pytest.raises(QuoteUnavailable):
            await client.quote(USDC, WAVE, 1)
        assert wrapper.snapshot("privacy-pool").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_zero_output_is_quote_unavailable(self):
        client, _ = make_client(Recorder(httpx.Response(200, json={"amountOut": "0"})))

        with pytest.raises(QuoteUnavailable):
            await client.quote(USDC, WAVE, 1)

    @pytest.mark.asyncio
    async def test_breaker_opens_after_five_failures(self):
        """Five exhausted quote calls open the breaker; the sixth never hits the transport."""
        recorder = Recorder(httpx.Response(503))
        client, _ = make_client(recorder)

        for _ in range(5):
            with pytest.raises(UpstreamUnavailable):
                await client.quote(USDC, WAVE, 1_500_000)
        assert len(recorder.requests) == 5

        with pytest.raises(CircuitOpenError):
            await client.quote(USDC, WAVE, 1_500_000)

        assert len(recorder.requests) == 5


# =============================================================================
# Transaction Build and Execute Tests
# =============================================================================

class TestTransactions:
    """Tests for build and execute calls."""

    @pytest.mark.asyncio
    async def test_build_deposit_transaction(self):
        recorder = Recorder(httpx.Response(200, json={"serializedTxn": "AAAA"}))
        client, _ = make_client(recorder)

        unsigned = await client.build_deposit_transaction(USDC, 6, 1_500_000, "user1")

        assert unsigned.serialized == "AAAA"
        assert recorder.requests[0].url.path == "/api/v1/prepare-wrap-tx"
        assert recorder.body() == {
            "token": {"tokenMintAddress": USDC, "decimals": 6},
            "depositor": "user1",
            "amount": "1500000",
        }

    @pytest.mark.asyncio
    async def test_build_without_transaction_is_rejected(self):
        client, _ = make_client(Recorder(httpx.Response(200, json={})))

        with pytest.raises(UpstreamRejectedError):
            await client.build_withdraw_transaction(WAVE, 9, 10, "user1")

    @pytest.mark.asyncio
    async def test_swap_order_details_round_trip_to_execute(self):
        recorder = Recorder(
            httpx.Response(200, json={"serializedTxn": "SWAP"}),
            httpx.Response(200, json={"orderStatusIdentifier": "order-9", "timestamp": 1700000000}),
        )
        client, _ = make_client(recorder)

        unsigned = await client.build_swap_transaction(USDC, WAVE, 1_500_000, "user1", "user1")
        submission = await client.execute_signed_swap(SignedTransaction(serialized="SIGNED"), unsigned.order_details)

        assert submission.order_status_identifier == "order-9"
        execute_body = recorder.body(1)
        assert recorder.requests[1].url.path == "/api/v1/swap/execute"
        assert execute_body["serializedTxn"] == "SIGNED"
        assert execute_body["orderDetails"]["inMint"] == USDC
        assert execute_body["orderDetails"]["amountIn"] == "1500000"
        assert execute_body["orderDetails"]["receiverPubkey"] == "user1"

    @pytest.mark.asyncio
    async def test_execute_without_identifier_is_rejected(self):
        client, _ = make_client(Recorder(httpx.Response(200, json={"success": True})))

        with pytest.raises(UpstreamRejectedError):
            await client.execute_signed_swap(SignedTransaction(serialized="SIGNED"), {})


# =============================================================================
# Status and Balance Tests
# =============================================================================

class TestReads:
    """Tests for order status and balance reads."""

    @pytest.mark.asyncio
    async def test_order_status_values(self):
        recorder = Recorder(
            httpx.Response(200, json={"status": "pending"}),
            httpx.Response(200, json={"status": {"status": "completed", "details": {"tx": "abc"}}}),
            httpx.Response(200, json={"status": "failed", "details": "slippage"}),
        )
        client, _ = make_client(recorder)

        first = await client.get_order_status("order-1")
        second = await client.get_order_status("order-1")
        third = await client.get_order_status("order-1")

        assert first.status == OrderState.PENDING
        assert not first.is_terminal
        assert second.status == OrderState.COMPLETED
        assert second.details == {"tx": "abc"}
        assert third.status == OrderState.FAILED
        assert recorder.body() == {"orderStatusIdentifier": "order-1"}

    @pytest.mark.asyncio
    async def test_private_balance_mapping_form(self):
        recorder = Recorder(httpx.Response(200, json={WAVE: "2500", USDC: {"balance": "0", "visible": False}}))
        client, _ = make_client(recorder)

        balances = await client.get_private_balance("user1", [WAVE, USDC], BalanceProof("sig", "msg"))

        assert balances[WAVE].balance == 2500
        assert balances[USDC].balance == 0
        assert balances[USDC].visible is False
        assert recorder.body()["signature"] == "sig"
        assert recorder.body()["messageHash"] == "msg"

    @pytest.mark.asyncio
    async def test_private_balance_list_form(self):
        recorder = Recorder(httpx.Response(200, json={"balances": [{"mint": WAVE, "amount": "12"}]}))
        client, _ = make_client(recorder)

        balances = await client.get_private_balance("user1", [WAVE], BalanceProof("sig", "msg"))

        assert balances[WAVE].balance == 12

    @pytest.mark.asyncio
    async def test_known_token_mints(self):
        recorder = Recorder(httpx.Response(200, json=[{"mint": WAVE, "symbol": "WAVE"}, USDC, {"other": 1}]))
        client, _ = make_client(recorder)

        mints = await client.get_known_token_mints("user1")

        assert [m.mint for m in mints] == [WAVE, USDC]
        assert recorder.body() == {"userPubkey": "user1"}

    @pytest.mark.asyncio
    async def test_message_to_sign(self):
        recorder = Recorder(httpx.Response(200, json={"msgPayload": "sign me"}))
        client, _ = make_client(recorder)

        assert await client.get_message_to_sign() == "sign me"
        assert recorder.requests[0].method == "GET"
