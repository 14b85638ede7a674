"""
Claim submission on a destination chain.
"""

import asyncio
from typing import Any, Optional

import aiohttp
import httpx
import structlog
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3RPCError,
    Web3ValidationError,
)

from .chain import ChainClient
from .errors import SubmissionError
from .models import ClaimRequest, ErrorKind, SubmissionResult

logger = structlog.get_logger()

# Node error messages that mean another transaction holds our nonce
NONCE_CONTENTION_MESSAGES = (
    "nonce too low",
    "nonce too high",
    "replacement transaction underpriced",
    "already known",
    "known transaction",
)


def classify_failure(exc: BaseException) -> tuple[ErrorKind, bool]:
    """
    Classify a submission failure as (kind, retryable).

    Only transport problems and nonce contention are retryable. Anything
    the node or contract rejected on its merits, and anything we cannot
    recognise, is terminal for the claim.
    """
    if isinstance(exc, SubmissionError):
        try:
            kind = ErrorKind(exc.kind) if exc.kind else ErrorKind.UNKNOWN
        except ValueError:
            kind = ErrorKind.UNKNOWN
        return kind, exc.retryable

    message = str(exc).lower()
    if any(m in message for m in NONCE_CONTENTION_MESSAGES):
        return ErrorKind.NONCE, True

    if isinstance(exc, ContractLogicError):
        return ErrorKind.REVERTED, False
    if isinstance(
        exc, (TimeExhausted, httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)
    ):
        return ErrorKind.TIMEOUT, True
    if isinstance(
        exc, (ProviderConnectionError, aiohttp.ClientError, httpx.TransportError, ConnectionError)
    ):
        return ErrorKind.NETWORK, True
    if isinstance(exc, Web3RPCError):
        if "revert" in message:
            return ErrorKind.REVERTED, False
        return ErrorKind.NETWORK, True
    if isinstance(exc, (Web3ValidationError, ValueError, TypeError)):
        return ErrorKind.INVALID_ARGUMENT, False

    return ErrorKind.UNKNOWN, False


class ClaimSubmitter:
    """Sends `claim(...)` calls to the bridge contract of one chain."""

    def __init__(
        self,
        name: str,
        client: ChainClient,
        contract_address: str,
        function_name: str = "claim",
        gas_limit: Optional[int] = None,
        max_fee: Optional[int] = None,
        fee_limit: Optional[int] = None,
    ):
        self.name = name
        self.client = client
        self.contract_address = contract_address
        self.function_name = function_name
        self.gas_limit = gas_limit
        self.max_fee = max_fee
        self.fee_limit = fee_limit

    @property
    def chain_id(self) -> int:
        return self.client.chain_id

    def _options(self) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.gas_limit is not None:
            options["gas_limit"] = self.gas_limit
        if self.max_fee is not None:
            options["max_fee"] = self.max_fee
        if self.fee_limit is not None:
            options["fee_limit"] = self.fee_limit
        return options

    async def submit(self, claim: ClaimRequest) -> SubmissionResult:
        """Submit one claim. Chain errors are returned, never raised."""
        try:
            tx_hash = await self.client.send_transaction(
                self.contract_address,
                self.function_name,
                claim.as_args(),
                self._options(),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind, retryable = classify_failure(e)
            logger.warning(
                "claim_submission_failed",
                submitter=self.name,
                deposit_id=claim.deposit_id_hex,
                error_kind=kind.value,
                retryable=retryable,
                error=str(e),
            )
            return SubmissionResult.failed(kind, retryable, str(e) or type(e).__name__)

        logger.info(
            "claim_tx_sent",
            submitter=self.name,
            deposit_id=claim.deposit_id_hex,
            tx_hash=tx_hash,
            recipient=claim.recipient,
            amount=claim.amount,
        )
        return SubmissionResult.ok(tx_hash)
