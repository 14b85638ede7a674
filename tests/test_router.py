"""
Tests for deposit routing.
"""

import pytest

from bridge_relayer.models import ClaimRequest, DepositEvent
from bridge_relayer.router import route

LOCAL = 11155111
PEER = 2494


def _event(destination_chain_id: int, amount: int = 1000) -> DepositEvent:
    return DepositEvent(
        sender="0x" + "aa" * 20,
        amount=amount,
        deposit_id=bytes.fromhex("01" + "00" * 31),
        source_chain_id=LOCAL,
        destination_chain_id=destination_chain_id,
    )


class TestRoute:
    """Tests for route()."""

    def test_routes_deposit_for_peer_chain(self) -> None:
        """A deposit for the peer chain becomes a claim for the sender."""
        event = _event(PEER)

        claim = route(event, LOCAL, PEER)

        assert claim == ClaimRequest(
            recipient="0x" + "aa" * 20,
            amount=1000,
            deposit_id=bytes.fromhex("01" + "00" * 31),
            source_chain_id=LOCAL,
        )

    @pytest.mark.parametrize("destination", [LOCAL, 999999, 0, 1])
    def test_other_destinations_are_skipped(self, destination: int) -> None:
        """Only the peer chain id routes; local and unrelated ids do not."""
        assert route(_event(destination), LOCAL, PEER) is None

    def test_amount_and_deposit_id_preserved(self) -> None:
        """Large uint256 amounts and the deposit id pass through untouched."""
        amount = 2**256 - 1
        event = _event(PEER, amount=amount)

        claim = route(event, LOCAL, PEER)

        assert claim is not None
        assert claim.amount == amount
        assert claim.deposit_id == event.deposit_id
        assert claim.source_chain_id == event.source_chain_id

    def test_source_chain_comes_from_event(self) -> None:
        """source_chain_id is copied from the event, not from the local argument."""
        event = DepositEvent(
            sender="0x" + "bb" * 20,
            amount=5,
            deposit_id=b"\x02" * 32,
            source_chain_id=42,
            destination_chain_id=PEER,
        )

        claim = route(event, LOCAL, PEER)

        assert claim is not None
        assert claim.source_chain_id == 42

    def test_reverse_direction(self) -> None:
        """The chain B listener routes deposits bound for chain A."""
        event = DepositEvent(
            sender="0x" + "cc" * 20,
            amount=7,
            deposit_id=b"\x03" * 32,
            source_chain_id=PEER,
            destination_chain_id=LOCAL,
        )

        claim = route(event, PEER, LOCAL)

        assert claim is not None
        assert claim.recipient == "0x" + "cc" * 20
        assert claim.source_chain_id == PEER
        assert route(event, LOCAL, PEER) is None

    def test_claim_args_order(self) -> None:
        """as_args() matches claim(recipient, amount, depositId, sourceChainId)."""
        claim = route(_event(PEER), LOCAL, PEER)

        assert claim is not None
        assert claim.as_args() == (
            "0x" + "aa" * 20,
            1000,
            bytes.fromhex("01" + "00" * 31),
            LOCAL,
        )
