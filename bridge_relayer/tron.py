"""
Tron chain client: bridge event polling via TronGrid and claim transactions via tronpy.
"""

import asyncio
from typing import Any, Mapping, Optional, Sequence

import httpx
import structlog
from tronpy import AsyncTron
from tronpy.exceptions import BadAddress, TransactionNotFound, ValidationError
from tronpy.keys import PrivateKey, to_base58check_address, to_hex_address
from tronpy.providers.async_http import AsyncHTTPProvider

from .chain import ErrorCallback, EventCallback, maybe_await
from .config import ChainConfig
from .errors import ConnectivityError, SubmissionError, SubscriptionError

logger = structlog.get_logger()

# Tron produces a block every 3 seconds
BLOCK_INTERVAL_MS = 3_000

# TronGrid page size limit for the events endpoint
EVENTS_PAGE_SIZE = 200


def to_evm_address(value: Any) -> str:
    """Convert a Tron address (base58 or 41-prefixed hex) to 0x-prefixed hex."""
    text = str(value)
    if text.startswith("0x"):
        return text
    if text.startswith("T") or (len(text) == 42 and text.startswith("41")):
        return "0x" + to_hex_address(text)[2:]
    return text


def _is_evm_address(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 42


class TronSubscription:
    """Handle for an event polling task."""

    def __init__(self, task: "asyncio.Task[None]"):
        self._task = task

    async def unsubscribe(self) -> None:
        if self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass  # Expected when cancelling


class TronChainClient:
    """
    Async client for a Tron bridge contract.

    Events come from the TronGrid events API and are handed out once their
    block has the configured number of confirmations. Claims are signed and
    broadcast with tronpy, capped by the configured fee limit.
    """

    def __init__(
        self,
        config: ChainConfig,
        receipt_timeout: float = 120.0,
        tron: Optional[AsyncTron] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.name = config.name
        self.chain_id = config.chain_id
        self.receipt_timeout = receipt_timeout

        headers = {"TRON-PRO-API-KEY": config.api_key} if config.api_key else {}
        self.tron = tron or AsyncTron(
            AsyncHTTPProvider(config.rpc_url, api_key=config.api_key or None)
        )
        self.http = http or httpx.AsyncClient(
            base_url=config.rpc_url.rstrip("/"), headers=headers, timeout=30.0
        )
        self.private_key = (
            PrivateKey(bytes.fromhex(config.private_key.removeprefix("0x")))
            if config.private_key
            else None
        )
        # One broadcast at a time per account
        self._send_lock = asyncio.Lock()

        logger.info(
            "tron_client_initialized",
            chain=self.name,
            chain_id=self.chain_id,
            api=config.rpc_url,
            sender=self.address if self.private_key else None,
        )

    @property
    def address(self) -> str:
        """Get account address (base58)."""
        if not self.private_key:
            raise ValueError("No private key configured")
        return self.private_key.public_key.to_base58check_address()

    async def get_now_block(self) -> tuple[int, int]:
        """Latest block as (number, timestamp in ms)."""
        response = await self.http.post("/wallet/getnowblock")
        response.raise_for_status()
        raw = response.json()["block_header"]["raw_data"]
        return int(raw["number"]), int(raw["timestamp"])

    async def check_connectivity(self) -> None:
        """Confirm the full node answers and the bridge contract exists."""
        try:
            number, _ = await self.get_now_block()
            await self.tron.get_contract(self.config.bridge_address)
        except Exception as e:
            raise ConnectivityError(self.name, f"Tron API unreachable: {e}") from e
        logger.debug("chain_reachable", chain=self.name, block_number=number)

    async def get_events(
        self, contract_address: str, event_name: str, since_ms: int
    ) -> list[dict[str, Any]]:
        """
        Get contract events emitted at or after `since_ms`.

        TronGrid pages results; all pages are followed via the fingerprint.
        """
        url = f"/v1/contracts/{to_base58check_address(contract_address)}/events"
        params: dict[str, Any] = {
            "event_name": event_name,
            "min_block_timestamp": since_ms,
            "order_by": "block_timestamp,asc",
            "limit": EVENTS_PAGE_SIZE,
        }
        events: list[dict[str, Any]] = []

        while True:
            response = await self.http.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
            if not payload.get("success", False):
                raise SubscriptionError(
                    self.name, f"event query failed: {payload.get('error', 'unknown error')}"
                )
            events.extend(payload.get("data", []))

            fingerprint = payload.get("meta", {}).get("fingerprint")
            if not fingerprint:
                return events
            params["fingerprint"] = fingerprint

    def _to_record(self, event: Mapping[str, Any]) -> dict[str, Any]:
        result = dict(event.get("result", {}))
        if "sender" in result:
            result["sender"] = to_evm_address(result["sender"])
        return {
            "event": event.get("event_name"),
            "args": result,
            "transactionHash": "0x" + str(event.get("transaction_id", "")),
            "blockNumber": event.get("block_number"),
            "logIndex": event.get("event_index"),
        }

    async def subscribe_event(
        self,
        contract_address: str,
        event_name: str,
        on_event: EventCallback,
        on_error: ErrorCallback,
    ) -> TronSubscription:
        """Start polling `event_name` events from the current final block onwards."""
        head, head_ts = await self.get_now_block()
        next_block = max(head - self.config.confirmations + 2, 0)
        since_ms = head_ts - self.config.confirmations * BLOCK_INTERVAL_MS

        task = asyncio.create_task(
            self._poll_events(
                contract_address, event_name, next_block, since_ms, on_event, on_error
            ),
            name=f"{self.name}-{event_name}-poll",
        )
        logger.info(
            "event_polling_started",
            chain=self.name,
            contract=contract_address,
            event_name=event_name,
            from_block=next_block,
            confirmations=self.config.confirmations,
        )
        return TronSubscription(task)

    async def _poll_events(
        self,
        contract_address: str,
        event_name: str,
        next_block: int,
        since_ms: int,
        on_event: EventCallback,
        on_error: ErrorCallback,
    ) -> None:
        try:
            while True:
                head, _ = await self.get_now_block()
                final_block = head - self.config.confirmations + 1

                if final_block >= next_block:
                    events = await self.get_events(contract_address, event_name, since_ms)
                    ready = [
                        e
                        for e in events
                        if next_block <= int(e["block_number"]) <= final_block
                    ]
                    for event in sorted(
                        ready, key=lambda e: (int(e["block_number"]), int(e["event_index"]))
                    ):
                        await maybe_await(on_event(self._to_record(event)))

                    if ready:
                        since_ms = max(since_ms, max(int(e["block_timestamp"]) for e in ready))
                    next_block = final_block + 1

                await asyncio.sleep(self.config.poll_interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "event_polling_failed",
                chain=self.name,
                event_name=event_name,
                next_block=next_block,
                error=str(e),
            )
            await maybe_await(on_error(e))

    async def send_transaction(
        self,
        contract_address: str,
        function_name: str,
        args: Sequence[Any],
        options: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Sign and broadcast a bridge contract call, then wait for its result.

        Options:
            fee_limit: Ceiling on the total fee in sun

        Raises:
            SubmissionError: If the call failed on chain or was never found
        """
        if not self.private_key:
            raise SubmissionError(
                "No private key configured", kind="invalid_argument", retryable=False
            )
        options = options or {}
        # 0x addresses from the EVM side are encoded as Tron addresses
        call_args = [to_base58check_address(a) if _is_evm_address(a) else a for a in args]

        try:
            contract = await self.tron.get_contract(contract_address)
            builder = await getattr(contract.functions, function_name)(*call_args)
            builder = builder.with_owner(self.address)
            if options.get("fee_limit") is not None:
                builder = builder.fee_limit(options["fee_limit"])

            async with self._send_lock:
                txn = await builder.build()
                sent = await txn.sign(self.private_key).broadcast()

            logger.info(
                "tx_sent",
                chain=self.name,
                function=function_name,
                tx_hash=sent.txid,
                fee_limit=options.get("fee_limit"),
            )
            info = await sent.wait(timeout=self.receipt_timeout)
        except TransactionNotFound as e:
            raise SubmissionError(
                f"Transaction not found after {self.receipt_timeout}s: {e}",
                kind="timeout",
                retryable=True,
            ) from e
        except (BadAddress, ValidationError) as e:
            raise SubmissionError(str(e), kind="invalid_argument", retryable=False) from e

        receipt_result = info.get("receipt", {}).get("result")
        if receipt_result != "SUCCESS":
            raise SubmissionError(
                f"Transaction {sent.txid} failed: {receipt_result or info.get('result')}",
                kind="reverted",
                retryable=False,
            )

        logger.info(
            "tx_confirmed",
            chain=self.name,
            tx_hash=sent.txid,
            block_number=info.get("blockNumber"),
            fee=info.get("fee"),
        )
        return sent.txid

    async def close(self) -> None:
        """Release HTTP sessions."""
        await self.http.aclose()
        await self.tron.close()
