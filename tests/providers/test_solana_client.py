"""
Tests for the Solana RPC client

Uses httpx.MockTransport so every JSON-RPC request is observable.
"""

import json

import httpx
import pytest

from waveswap.core.resilience import (
    CallPolicy,
    ChainTransactionFailed,
    ConfirmationTimeout,
    ResilienceWrapper,
)
from waveswap.providers.solana import NATIVE_SOL_MINT, ConfirmationLevel, SolanaRpcClient, SolanaRpcError

READ = CallPolicy(max_attempts=2, base_delay_seconds=0.0, timeout_seconds=1.0, failure_threshold=1)


async def no_sleep(_delay):
    return None


def make_client(handler, wrapper=None):
    wrapper = wrapper or ResilienceWrapper(sleep=no_sleep)
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = SolanaRpcClient(
        wrapper,
        "https://rpc.example",
        read_policy=READ,
        transactional_policy=READ,
        http_client=http,
    )
    return client, wrapper


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


def status_value(value):
    return rpc_result({"context": {"slot": 1}, "value": [value]})


# =============================================================================
# Confirmation Status Tests
# =============================================================================

class TestConfirmationStatus:
    """Tests for get_confirmation_status."""

    @pytest.mark.asyncio
    async def test_not_found(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return status_value(None)

        client, _ = make_client(handler)
        status = await client.get_confirmation_status("sig111")

        assert status.found is False
        assert status.available is True
        assert seen[0]["method"] == "getSignatureStatuses"
        assert seen[0]["params"] == [["sig111"], {"searchTransactionHistory": True}]

    @pytest.mark.asyncio
    async def test_confirmed(self):
        client, _ = make_client(lambda r: status_value({"err": None, "confirmationStatus": "confirmed"}))
        status = await client.get_confirmation_status("sig")

        assert status.found is True
        assert status.err is None
        assert status.confirmation_level == ConfirmationLevel.CONFIRMED
        assert status.is_confirmed

    @pytest.mark.asyncio
    async def test_finalized(self):
        client, _ = make_client(lambda r: status_value({"err": None, "confirmationStatus": "finalized"}))
        status = await client.get_confirmation_status("sig")
        assert status.confirmation_level == ConfirmationLevel.FINALIZED

    @pytest.mark.asyncio
    async def test_processed_maps_to_none(self):
        client, _ = make_client(lambda r: status_value({"err": None, "confirmationStatus": "processed"}))
        status = await client.get_confirmation_status("sig")

        assert status.found is True
        assert status.confirmation_level == ConfirmationLevel.NONE
        assert not status.is_confirmed

    @pytest.mark.asyncio
    async def test_on_chain_error(self):
        err = {"InstructionError": [0, "Custom"]}
        client, _ = make_client(lambda r: status_value({"err": err, "confirmationStatus": "confirmed"}))
        status = await client.get_confirmation_status("sig")

        assert status.found is True
        assert status.err == err

    @pytest.mark.asyncio
    async def test_transport_failure_reports_unavailable(self):
        call_count = 0

        def handler(request):
            nonlocal call_count
            call_count += 1
            return httpx.Response(503)

        client, _ = make_client(handler)
        status = await client.get_confirmation_status("sig")

        assert call_count == READ.max_attempts
        assert status.found is False
        assert status.available is False
        assert status.confirmation_level == ConfirmationLevel.NONE

    @pytest.mark.asyncio
    async def test_open_breaker_reports_unavailable_without_request(self):
        call_count = 0

        def handler(request):
            nonlocal call_count
            call_count += 1
            return httpx.Response(503)

        client, _ = make_client(handler)
        await client.get_confirmation_status("sig")  # exhausts and opens (threshold 1)
        call_count = 0

        status = await client.get_confirmation_status("sig")

        assert call_count == 0
        assert status.available is False

    @pytest.mark.asyncio
    async def test_transient_rpc_error_is_retried(self):
        responses = [
            httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "behind"}}),
            status_value(None),
        ]
        client, _ = make_client(lambda r: responses.pop(0))

        status = await client.get_confirmation_status("sig")

        assert status.available is True
        assert responses == []


# =============================================================================
# Submission and Confirmation Tests
# =============================================================================

class TestSubmission:
    """Tests for send_transaction and wait_for_confirmation."""

    @pytest.mark.asyncio
    async def test_send_transaction_returns_signature(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return rpc_result("5igSig")

        client, _ = make_client(handler)
        signature = await client.send_transaction("AQID")

        assert signature == "5igSig"
        assert seen[0]["method"] == "sendTransaction"
        assert seen[0]["params"][0] == "AQID"
        assert seen[0]["params"][1]["encoding"] == "base64"

    @pytest.mark.asyncio
    async def test_preflight_rejection_not_retried(self):
        call_count = 0

        def handler(request):
            nonlocal call_count
            call_count += 1
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32002, "message": "simulation failed"}},
            )

        client, wrapper = make_client(handler)

        with pytest.raises(SolanaRpcError):
            await client.send_transaction("AQID")
        assert call_count == 1
        assert wrapper.snapshot("solana-rpc").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_wait_for_confirmation_returns_when_confirmed(self):
        responses = [
            status_value(None),
            status_value({"err": None, "confirmationStatus": "processed"}),
            status_value({"err": None, "confirmationStatus": "confirmed"}),
        ]
        client, _ = make_client(lambda r: responses.pop(0))

        status = await client.wait_for_confirmation("sig", timeout_s=5, poll_interval_s=0.01)

        assert status.is_confirmed

    @pytest.mark.asyncio
    async def test_wait_for_confirmation_raises_on_chain_error(self):
        client, _ = make_client(lambda r: status_value({"err": {"x": 1}, "confirmationStatus": "confirmed"}))

        with pytest.raises(ChainTransactionFailed) as exc_info:
            await client.wait_for_confirmation("sig", timeout_s=5, poll_interval_s=0.01)
        assert exc_info.value.signature == "sig"

    @pytest.mark.asyncio
    async def test_wait_for_confirmation_times_out(self):
        client, _ = make_client(lambda r: status_value(None))

        with pytest.raises(ConfirmationTimeout):
            await client.wait_for_confirmation("sig", timeout_s=0.05, poll_interval_s=0.01)


# =============================================================================
# Token Balance Tests
# =============================================================================

class TestTokenBalance:
    """Tests for get_token_balance."""

    @pytest.mark.asyncio
    async def test_sums_token_accounts(self):
        def account(amount):
            return {
                "pubkey": "acct",
                "account": {"data": {"parsed": {"info": {"tokenAmount": {"amount": str(amount), "decimals": 9}}}}},
            }

        client, _ = make_client(lambda r: rpc_result({"value": [account(1500), account(500)]}))

        assert await client.get_token_balance("owner", "mint") == 2000

    @pytest.mark.asyncio
    async def test_no_accounts_is_zero(self):
        client, _ = make_client(lambda r: rpc_result({"value": []}))
        assert await client.get_token_balance("owner", "mint") == 0

    @pytest.mark.asyncio
    async def test_native_sol_adds_lamports_to_wrapped_accounts(self):
        methods = []

        def handler(request):
            body = json.loads(request.content)
            methods.append(body["method"])
            if body["method"] == "getBalance":
                return rpc_result({"context": {"slot": 1}, "value": 2_000_000_000})
            return rpc_result(
                {
                    "value": [
                        {
                            "pubkey": "wsol",
                            "account": {"data": {"parsed": {"info": {"tokenAmount": {"amount": "500"}}}}},
                        }
                    ]
                }
            )

        client, _ = make_client(handler)

        balance = await client.get_token_balance("owner", NATIVE_SOL_MINT)

        assert methods == ["getTokenAccountsByOwner", "getBalance"]
        assert balance == 2_000_000_500

    @pytest.mark.asyncio
    async def test_spl_mint_skips_native_balance(self):
        methods = []

        def handler(request):
            methods.append(json.loads(request.content)["method"])
            return rpc_result({"value": []})

        client, _ = make_client(handler)
        await client.get_token_balance("owner", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")

        assert methods == ["getTokenAccountsByOwner"]
