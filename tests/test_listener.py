"""
Tests for ChainListener sessions.
"""

import asyncio

import pytest

from bridge_relayer.errors import EventDecodeError, SubscriptionError
from bridge_relayer.listener import ChainListener
from bridge_relayer.models import ListenerState

from fakes import BRIDGE_A, CHAIN_A_ID, FakeChainClient, bridge_log, deposit_id, wait_until


def _listener(client: FakeChainClient) -> tuple[ChainListener, asyncio.Queue]:
    queue: asyncio.Queue = asyncio.Queue()
    return ChainListener("sepolia", client, BRIDGE_A, queue), queue


async def _start(listener: ChainListener) -> asyncio.Task:
    task = asyncio.create_task(listener.run_session())
    await wait_until(lambda: listener.state is ListenerState.ACTIVE)
    return task


class TestChainListener:
    """Tests for ChainListener."""

    def test_initial_state(self) -> None:
        listener, _ = _listener(FakeChainClient(CHAIN_A_ID))
        assert listener.state is ListenerState.STOPPED
        assert listener.local_chain_id == CHAIN_A_ID
        assert listener.session == 0

    @pytest.mark.asyncio
    async def test_events_are_queued_in_order(self) -> None:
        client = FakeChainClient(CHAIN_A_ID)
        listener, queue = _listener(client)
        task = await _start(listener)

        client.emit(bridge_log(deposit=1, block_number=10))
        client.emit(bridge_log(deposit=2, block_number=11))

        first = queue.get_nowait()
        second = queue.get_nowait()
        assert first[0] is listener
        assert first[1].deposit_id == deposit_id(1)
        assert first[1].source_chain_id == CHAIN_A_ID
        assert second[1].deposit_id == deposit_id(2)
        assert listener.events_delivered == 2

        await listener.stop()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_subscribe_failure(self) -> None:
        """A failed subscribe ends the session in FAULTED."""
        client = FakeChainClient(CHAIN_A_ID)
        client.subscribe_errors = [RuntimeError("connection refused")]
        listener, _ = _listener(client)

        with pytest.raises(SubscriptionError, match="connection refused"):
            await listener.run_session()

        assert listener.state is ListenerState.FAULTED
        assert not listener.was_active

    @pytest.mark.asyncio
    async def test_stream_error_faults_session(self) -> None:
        client = FakeChainClient(CHAIN_A_ID)
        listener, _ = _listener(client)
        task = await _start(listener)
        assert listener.was_active

        client.fail(ConnectionResetError("websocket closed"))

        with pytest.raises(SubscriptionError, match="websocket closed"):
            await task
        assert listener.state is ListenerState.FAULTED
        assert client.unsubscribed == 1

    @pytest.mark.asyncio
    async def test_malformed_log_faults_session(self) -> None:
        client = FakeChainClient(CHAIN_A_ID)
        listener, queue = _listener(client)
        task = await _start(listener)

        record = bridge_log()
        del record["args"]["depositId"]
        client.emit(record)

        with pytest.raises(EventDecodeError):
            await task
        assert queue.empty()
        assert listener.state is ListenerState.FAULTED

    @pytest.mark.asyncio
    async def test_events_after_fault_are_dropped(self) -> None:
        client = FakeChainClient(CHAIN_A_ID)
        listener, queue = _listener(client)
        task = await _start(listener)

        client.fail(RuntimeError("boom"))
        client.emit(bridge_log(deposit=9))

        with pytest.raises(SubscriptionError):
            await task
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_stale_session_callbacks_ignored(self) -> None:
        """Callbacks from a previous session neither deliver nor fault."""
        client = FakeChainClient(CHAIN_A_ID)
        listener, queue = _listener(client)

        task = await _start(listener)
        old = client.current
        client.fail(RuntimeError("first session broke"))
        with pytest.raises(SubscriptionError):
            await task

        task = await _start(listener)
        assert listener.session == 2

        old.on_event(bridge_log(deposit=3))
        old.on_error(RuntimeError("late error"))

        assert queue.empty()
        assert listener.state is ListenerState.ACTIVE

        client.emit(bridge_log(deposit=4))
        _, event = queue.get_nowait()
        assert event.deposit_id == deposit_id(4)

        await listener.stop()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_stop_releases_subscription(self) -> None:
        client = FakeChainClient(CHAIN_A_ID)
        listener, _ = _listener(client)
        task = await _start(listener)

        await listener.stop()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert listener.state is ListenerState.STOPPED
        assert client.unsubscribed == 1
        assert not client.current.active

    @pytest.mark.asyncio
    async def test_unsubscribe_failure_is_not_fatal(self) -> None:
        client = FakeChainClient(CHAIN_A_ID)
        listener, _ = _listener(client)
        task = await _start(listener)

        async def broken_unsubscribe() -> None:
            raise RuntimeError("already closed")

        client.current.unsubscribe = broken_unsubscribe  # type: ignore[method-assign]
        client.fail(RuntimeError("stream ended"))

        with pytest.raises(SubscriptionError, match="stream ended"):
            await task
        assert listener.state is ListenerState.FAULTED
