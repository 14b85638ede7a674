"""
Bridge Relayer

Watches the bridge contracts of two chains for deposit (`Bridge`) events
and submits the matching `claim` transaction on the other chain.

Usage:
    # Check both chains are reachable
    bridge-relayer check --config .env

    # Run the relayer
    bridge-relayer run --config .env
"""

__version__ = "0.1.0"

from .config import ChainConfig, RelayerConfig, Settings
from .coordinator import RelayCoordinator
from .db import ClaimLedger
from .evm import EvmChainClient
from .listener import ChainListener
from .models import ClaimRequest, DepositEvent, ListenerState, SubmissionResult
from .router import route
from .submitter import ClaimSubmitter

__all__ = [
    "__version__",
    "Settings",
    "ChainConfig",
    "RelayerConfig",
    "RelayCoordinator",
    "ClaimLedger",
    "EvmChainClient",
    "ChainListener",
    "ClaimSubmitter",
    "ClaimRequest",
    "DepositEvent",
    "ListenerState",
    "SubmissionResult",
    "route",
]
