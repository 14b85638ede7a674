"""
EVM chain client: bridge event polling and claim transactions.
"""

import asyncio
from typing import Any, Mapping, Optional, Sequence

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.types import TxReceipt

from .chain import ErrorCallback, EventCallback, maybe_await
from .config import ChainConfig
from .errors import ConnectivityError, SubmissionError

logger = structlog.get_logger()

# Bridge contract ABI (events and the claim entry point)
BRIDGE_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "sender", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": True, "name": "depositId", "type": "bytes32"},
            {"indexed": False, "name": "destinationChainId", "type": "uint256"},
        ],
        "name": "Bridge",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "recipient", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": True, "name": "depositId", "type": "bytes32"},
            {"indexed": False, "name": "sourceChainId", "type": "uint256"},
        ],
        "name": "Claim",
        "type": "event",
    },
    {
        "inputs": [
            {"name": "recipient", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "depositId", "type": "bytes32"},
            {"name": "sourceChainId", "type": "uint256"},
        ],
        "name": "claim",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Upper bound on blocks per eth_getLogs call
MAX_BLOCK_RANGE = 1000


class EvmSubscription:
    """Handle for a log polling task."""

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


class EvmChainClient:
    """
    Async client for one EVM chain's bridge contract.

    Events are read by polling eth_getLogs and handed out only once their
    block has the configured number of confirmations.
    """

    def __init__(
        self,
        config: ChainConfig,
        receipt_timeout: float = 120.0,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.config = config
        self.name = config.name
        self.chain_id = config.chain_id
        self.receipt_timeout = receipt_timeout
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        self.account = Account.from_key(config.private_key) if config.private_key else None
        # Serializes nonce allocation between concurrent claims
        self._send_lock = asyncio.Lock()

        logger.info(
            "evm_client_initialized",
            chain=self.name,
            chain_id=self.chain_id,
            rpc_url=config.rpc_url,
            sender=self.account.address if self.account else None,
        )

    @property
    def address(self) -> str:
        """Get account address."""
        if not self.account:
            raise ValueError("No private key configured")
        return self.account.address

    def get_bridge(self, address: str) -> Any:
        """Get bridge contract instance."""
        return self.w3.eth.contract(
            address=self.w3.to_checksum_address(address),
            abi=BRIDGE_ABI,
        )

    async def check_connectivity(self) -> None:
        """Confirm the RPC answers and serves the configured chain."""
        try:
            remote_chain_id = await self.w3.eth.chain_id
        except Exception as e:
            raise ConnectivityError(self.name, f"RPC unreachable: {e}") from e

        if remote_chain_id != self.chain_id:
            raise ConnectivityError(
                self.name,
                f"RPC serves chain {remote_chain_id}, expected {self.chain_id}",
            )
        logger.debug("chain_reachable", chain=self.name, chain_id=remote_chain_id)

    async def get_final_block(self) -> int:
        """Highest block with at least `confirmations` confirmations."""
        head = await self.w3.eth.block_number
        return head - self.config.confirmations + 1

    async def subscribe_event(
        self,
        contract_address: str,
        event_name: str,
        on_event: EventCallback,
        on_error: ErrorCallback,
    ) -> EvmSubscription:
        """Start polling `event_name` logs from the current final block onwards."""
        contract = self.get_bridge(contract_address)
        if not hasattr(contract.events, event_name):
            raise ValueError(f"Event {event_name} not found in bridge ABI")
        event = getattr(contract.events, event_name)

        from_block = max(await self.get_final_block() + 1, 0)
        task = asyncio.create_task(
            self._poll_logs(event, event_name, from_block, on_event, on_error),
            name=f"{self.name}-{event_name}-poll",
        )
        logger.info(
            "event_polling_started",
            chain=self.name,
            contract=contract_address,
            event_name=event_name,
            from_block=from_block,
            confirmations=self.config.confirmations,
        )
        return EvmSubscription(task)

    async def _poll_logs(
        self,
        event: Any,
        event_name: str,
        next_block: int,
        on_event: EventCallback,
        on_error: ErrorCallback,
    ) -> None:
        try:
            while True:
                final_block = await self.get_final_block()

                while next_block <= final_block:
                    to_block = min(next_block + MAX_BLOCK_RANGE - 1, final_block)
                    logs = await event.get_logs(from_block=next_block, to_block=to_block)
                    if logs:
                        logger.debug(
                            "logs_fetched",
                            chain=self.name,
                            event_name=event_name,
                            count=len(logs),
                            from_block=next_block,
                            to_block=to_block,
                        )
                    for log in sorted(logs, key=lambda l: (l["blockNumber"], l["logIndex"])):
                        await maybe_await(on_event(log))
                    next_block = to_block + 1

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
        Sign and send a bridge contract call, then wait for its receipt.

        Options:
            gas_limit: Fixed gas limit (estimated when absent)
            max_fee: Ceiling on the gas price in wei

        Raises:
            SubmissionError: If the transaction reverted
        """
        if not self.account:
            raise SubmissionError(
                "No private key configured", kind="invalid_argument", retryable=False
            )
        options = options or {}

        contract = self.get_bridge(contract_address)
        call = getattr(contract.functions, function_name)(*args)

        async with self._send_lock:
            nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
            gas_price = await self.w3.eth.gas_price

            max_fee = options.get("max_fee")
            if max_fee is not None and gas_price > max_fee:
                logger.warning(
                    "gas_price_capped",
                    chain=self.name,
                    gas_price=gas_price,
                    max_fee=max_fee,
                )
                gas_price = max_fee

            tx_params: dict[str, Any] = {
                "from": self.address,
                "chainId": self.chain_id,
                "nonce": nonce,
                "gasPrice": gas_price,
            }
            if options.get("gas_limit"):
                tx_params["gas"] = options["gas_limit"]

            tx = await call.build_transaction(tx_params)
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        tx_hash_hex = self.w3.to_hex(tx_hash)
        logger.info(
            "tx_sent",
            chain=self.name,
            function=function_name,
            tx_hash=tx_hash_hex,
            nonce=nonce,
        )

        receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.receipt_timeout
        )
        if receipt["status"] != 1:
            raise SubmissionError(
                f"Transaction {tx_hash_hex} reverted", kind="reverted", retryable=False
            )

        logger.info(
            "tx_confirmed",
            chain=self.name,
            tx_hash=tx_hash_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
        return tx_hash_hex

    async def close(self) -> None:
        """Release the provider's HTTP session."""
        await self.w3.provider.disconnect()
