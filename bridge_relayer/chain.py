"""
Chain client capability consumed by the relayer core.

The core never builds providers or handles keys itself; it only talks to
objects implementing `ChainClient`: `bridge_relayer.evm.EvmChainClient` for
EVM JSON-RPC endpoints and `bridge_relayer.tron.TronChainClient` for Tron.
"""

import inspect
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence, Union

EventCallback = Callable[[Mapping[str, Any]], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[BaseException], Union[None, Awaitable[None]]]


async def maybe_await(result: Any) -> None:
    """Await a callback's result when the callback was a coroutine function."""
    if inspect.isawaitable(result):
        await result


class Subscription(Protocol):
    """Handle for a live event subscription."""

    async def unsubscribe(self) -> None: ...


class ChainClient(Protocol):
    """Network access to one chain."""

    name: str
    chain_id: int

    async def subscribe_event(
        self,
        contract_address: str,
        event_name: str,
        on_event: EventCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        """
        Start delivering decoded `event_name` logs of `contract_address`.

        `on_event` receives one decoded record per log, in chain order.
        `on_error` is called once if the stream breaks; no further events
        are delivered after it.
        """
        ...

    async def send_transaction(
        self,
        contract_address: str,
        function_name: str,
        args: Sequence[Any],
        options: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Send a signed contract call and return its transaction hash."""
        ...

    async def check_connectivity(self) -> None:
        """Raise ConnectivityError if the chain cannot be reached."""
        ...

    async def close(self) -> None:
        """Release network sessions."""
        ...
