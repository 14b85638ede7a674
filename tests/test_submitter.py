"""
Tests for claim submission and failure classification.
"""

import asyncio

import aiohttp
import httpx
import pytest
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3RPCError,
    Web3ValidationError,
)

from bridge_relayer.errors import SubmissionError
from bridge_relayer.models import ClaimRequest, ErrorKind
from bridge_relayer.submitter import ClaimSubmitter, classify_failure

from fakes import BRIDGE_B, CHAIN_A_ID, CHAIN_B_ID, SENDER, FakeChainClient, deposit_id


def _claim() -> ClaimRequest:
    return ClaimRequest(
        recipient=SENDER,
        amount=1000,
        deposit_id=deposit_id(1),
        source_chain_id=CHAIN_A_ID,
    )


class TestClassifyFailure:
    """Tests for classify_failure()."""

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (TimeExhausted("receipt not found after 120s"), (ErrorKind.TIMEOUT, True)),
            (asyncio.TimeoutError(), (ErrorKind.TIMEOUT, True)),
            (ProviderConnectionError("connection refused"), (ErrorKind.NETWORK, True)),
            (aiohttp.ClientConnectionError("reset by peer"), (ErrorKind.NETWORK, True)),
            (ConnectionResetError("reset"), (ErrorKind.NETWORK, True)),
            (httpx.ConnectError("connection refused"), (ErrorKind.NETWORK, True)),
            (httpx.ReadTimeout("read timed out"), (ErrorKind.TIMEOUT, True)),
            (Web3RPCError("rate limit exceeded"), (ErrorKind.NETWORK, True)),
            (ValueError("nonce too low"), (ErrorKind.NONCE, True)),
            (Web3RPCError("replacement transaction underpriced"), (ErrorKind.NONCE, True)),
            (ContractLogicError("execution reverted: already claimed"), (ErrorKind.REVERTED, False)),
            (Web3RPCError("execution reverted"), (ErrorKind.REVERTED, False)),
            (Web3ValidationError("Could not identify the intended function"), (ErrorKind.INVALID_ARGUMENT, False)),
            (TypeError("bad argument"), (ErrorKind.INVALID_ARGUMENT, False)),
            (RuntimeError("something odd"), (ErrorKind.UNKNOWN, False)),
        ],
    )
    def test_classification(self, exc: BaseException, expected: tuple) -> None:
        assert classify_failure(exc) == expected

    def test_submission_error_keeps_its_classification(self) -> None:
        exc = SubmissionError("tx reverted", kind="reverted", retryable=False)
        assert classify_failure(exc) == (ErrorKind.REVERTED, False)

    def test_submission_error_retryable(self) -> None:
        exc = SubmissionError("gateway timeout", kind="timeout", retryable=True)
        assert classify_failure(exc) == (ErrorKind.TIMEOUT, True)

    def test_submission_error_unknown_kind(self) -> None:
        exc = SubmissionError("weird", kind="not-a-kind", retryable=True)
        assert classify_failure(exc) == (ErrorKind.UNKNOWN, True)


class TestClaimSubmitter:
    """Tests for ClaimSubmitter.submit()."""

    @pytest.mark.asyncio
    async def test_successful_submit(self) -> None:
        client = FakeChainClient(CHAIN_B_ID)
        client.send_results = ["0xfeed"]
        submitter = ClaimSubmitter("shasta", client, BRIDGE_B)

        result = await submitter.submit(_claim())

        assert result.success
        assert result.tx_hash == "0xfeed"
        assert client.sent == [
            (BRIDGE_B, "claim", (SENDER, 1000, deposit_id(1), CHAIN_A_ID), {}),
        ]

    @pytest.mark.asyncio
    async def test_fee_ceiling_passed_as_options(self) -> None:
        client = FakeChainClient(CHAIN_B_ID)
        submitter = ClaimSubmitter(
            "shasta", client, BRIDGE_B, gas_limit=300_000, max_fee=100_000_000
        )

        await submitter.submit(_claim())

        assert client.sent[0][3] == {"gas_limit": 300_000, "max_fee": 100_000_000}

    @pytest.mark.asyncio
    async def test_tron_fee_limit_is_its_own_option(self) -> None:
        """A total fee ceiling never turns into a gas price cap."""
        client = FakeChainClient(CHAIN_B_ID)
        submitter = ClaimSubmitter("shasta", client, BRIDGE_B, fee_limit=100_000_000)

        await submitter.submit(_claim())

        assert client.sent[0][3] == {"fee_limit": 100_000_000}

    @pytest.mark.asyncio
    async def test_retryable_failure_is_returned(self) -> None:
        client = FakeChainClient(CHAIN_B_ID)
        client.send_results = [TimeExhausted("no receipt")]
        submitter = ClaimSubmitter("shasta", client, BRIDGE_B)

        result = await submitter.submit(_claim())

        assert not result.success
        assert result.retryable
        assert result.error_kind is ErrorKind.TIMEOUT
        assert "no receipt" in (result.error or "")

    @pytest.mark.asyncio
    async def test_revert_is_not_retryable(self) -> None:
        client = FakeChainClient(CHAIN_B_ID)
        client.send_results = [ContractLogicError("execution reverted: already claimed")]
        submitter = ClaimSubmitter("shasta", client, BRIDGE_B)

        result = await submitter.submit(_claim())

        assert not result.success
        assert not result.retryable
        assert result.error_kind is ErrorKind.REVERTED

    def test_chain_id_comes_from_client(self) -> None:
        submitter = ClaimSubmitter("shasta", FakeChainClient(CHAIN_B_ID), BRIDGE_B)
        assert submitter.chain_id == CHAIN_B_ID
