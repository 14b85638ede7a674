"""
Deposit routing between the two chains of a relay pair.
"""

from typing import Optional

from .models import ClaimRequest, DepositEvent


def route(
    event: DepositEvent, local_chain_id: int, peer_chain_id: int
) -> Optional[ClaimRequest]:
    """
    Map a deposit seen on `local_chain_id` to a claim on `peer_chain_id`.

    Returns None when the deposit targets any other chain (including the
    local one); such events belong to another relay pair.
    """
    if event.destination_chain_id != peer_chain_id:
        return None

    return ClaimRequest(
        recipient=event.sender,
        amount=event.amount,
        deposit_id=event.deposit_id,
        source_chain_id=event.source_chain_id,
    )
