"""
Per-chain listener for bridge deposit events.

A listener runs one subscription session at a time. Each delivered log is
normalized into a DepositEvent and pushed onto the coordinator's queue in
delivery order. The listener never restarts itself: a broken stream ends
the session with SubscriptionError and the coordinator decides when to
start the next one.
"""

import asyncio
import functools
from typing import Any, Mapping, Optional

import structlog

from .chain import ChainClient, Subscription
from .errors import EventDecodeError, SubscriptionError
from .models import DepositEvent, ListenerState

logger = structlog.get_logger()


class ChainListener:
    """Subscribes to the `Bridge` event stream of one chain."""

    def __init__(
        self,
        name: str,
        client: ChainClient,
        contract_address: str,
        queue: "asyncio.Queue[tuple[ChainListener, DepositEvent]]",
        event_name: str = "Bridge",
    ):
        self.name = name
        self.client = client
        self.contract_address = contract_address
        self.event_name = event_name
        self.queue = queue
        self.local_chain_id = client.chain_id

        self.session = 0
        self.events_delivered = 0
        self.was_active = False
        self._state = ListenerState.STOPPED
        self._subscription: Optional[Subscription] = None
        self._fault: Optional["asyncio.Future[BaseException]"] = None

    @property
    def state(self) -> ListenerState:
        return self._state

    def _set_state(self, state: ListenerState) -> None:
        if state is self._state:
            return
        logger.info(
            "listener_state_changed",
            listener=self.name,
            session=self.session,
            previous=self._state.value,
            state=state.value,
        )
        self._state = state

    async def run_session(self) -> None:
        """
        Subscribe and deliver events until the stream breaks.

        Always ends by raising: SubscriptionError when the stream fails,
        CancelledError when the coordinator shuts the session down. The
        subscription is torn down before this returns control.
        """
        self.session += 1
        session = self.session
        self.was_active = False
        self._fault = asyncio.get_running_loop().create_future()
        self._set_state(ListenerState.STARTING)

        try:
            self._subscription = await self.client.subscribe_event(
                self.contract_address,
                self.event_name,
                functools.partial(self._on_event, session),
                functools.partial(self._on_error, session),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._set_state(ListenerState.FAULTED)
            raise SubscriptionError(self.name, f"subscribe failed: {e}") from e

        if not self._fault.done():
            self._set_state(ListenerState.ACTIVE)
            self.was_active = True
            logger.info(
                "listener_subscribed",
                listener=self.name,
                session=session,
                chain_id=self.local_chain_id,
                contract=self.contract_address,
                event_name=self.event_name,
            )

        try:
            error = await self._fault
        finally:
            await self._teardown()

        self._set_state(ListenerState.FAULTED)
        if isinstance(error, SubscriptionError):
            raise error
        raise SubscriptionError(self.name, str(error) or type(error).__name__) from error

    def _on_event(self, session: int, record: Mapping[str, Any]) -> None:
        if session != self.session or self._fault is None or self._fault.done():
            logger.debug("stale_event_dropped", listener=self.name, session=session)
            return

        try:
            event = DepositEvent.from_log(record, self.local_chain_id)
        except EventDecodeError as e:
            self._on_error(session, e)
            return

        self.events_delivered += 1
        logger.debug(
            "deposit_event_received",
            listener=self.name,
            deposit_id=event.deposit_id_hex,
            destination_chain_id=event.destination_chain_id,
            block_number=event.block_number,
            tx_hash=event.tx_hash,
        )
        self.queue.put_nowait((self, event))

    def _on_error(self, session: int, error: BaseException) -> None:
        if session != self.session or self._fault is None or self._fault.done():
            return
        logger.warning(
            "listener_stream_error",
            listener=self.name,
            session=session,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._fault.set_result(error)

    async def _teardown(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            await subscription.unsubscribe()
        except Exception as e:
            logger.warning("unsubscribe_failed", listener=self.name, error=str(e))

    async def stop(self) -> None:
        """Stop delivering events and release the subscription."""
        if self._fault is not None and not self._fault.done():
            self._fault.cancel()
        await self._teardown()
        self._set_state(ListenerState.STOPPED)
