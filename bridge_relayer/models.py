"""
Data models passed through the relay pipeline.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from .errors import EventDecodeError

DEPOSIT_ID_LENGTH = 32


class ListenerState(str, Enum):
    """Lifecycle of a chain listener."""

    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"
    FAULTED = "faulted"


class ErrorKind(str, Enum):
    """Classification of a failed claim submission."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    NONCE = "nonce"
    REVERTED = "reverted"
    INVALID_ARGUMENT = "invalid_argument"
    UNKNOWN = "unknown"


def deposit_id_to_bytes(value: Any) -> bytes:
    """Normalize a deposit id (bytes or 0x-hex string) to 32 raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        raw = bytes.fromhex(value.removeprefix("0x"))
    else:
        raise ValueError(f"unsupported deposit id type: {type(value).__name__}")

    if len(raw) != DEPOSIT_ID_LENGTH:
        raise ValueError(f"deposit id must be {DEPOSIT_ID_LENGTH} bytes, got {len(raw)}")
    return raw


def _to_hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


@dataclass(frozen=True)
class DepositEvent:
    """A bridge deposit observed on its source chain."""

    sender: str
    amount: int
    deposit_id: bytes
    source_chain_id: int
    destination_chain_id: int

    # Log position, informational only
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    log_index: Optional[int] = None

    @property
    def deposit_id_hex(self) -> str:
        return "0x" + self.deposit_id.hex()

    @classmethod
    def from_log(cls, record: Mapping[str, Any], source_chain_id: int) -> "DepositEvent":
        """
        Build a DepositEvent from a decoded `Bridge` log record.

        The record follows web3's EventData shape: event arguments under
        "args", plus "transactionHash", "blockNumber" and "logIndex".

        Raises:
            EventDecodeError: If required arguments are missing or malformed
        """
        args = record.get("args")
        if not isinstance(args, Mapping):
            raise EventDecodeError(str(source_chain_id), "log record has no decoded args")

        try:
            sender = str(args["sender"])
            amount = int(args["amount"])
            deposit_id = deposit_id_to_bytes(args["depositId"])
            destination_chain_id = int(args["destinationChainId"])
        except (KeyError, TypeError, ValueError) as e:
            raise EventDecodeError(str(source_chain_id), f"malformed Bridge event: {e!r}") from e

        if amount < 0:
            raise EventDecodeError(str(source_chain_id), f"negative amount {amount}")

        return cls(
            sender=sender,
            amount=amount,
            deposit_id=deposit_id,
            source_chain_id=source_chain_id,
            destination_chain_id=destination_chain_id,
            tx_hash=_to_hex(record.get("transactionHash")),
            block_number=record.get("blockNumber"),
            log_index=record.get("logIndex"),
        )


@dataclass(frozen=True)
class ClaimRequest:
    """Arguments of the claim call on the destination chain."""

    recipient: str
    amount: int
    deposit_id: bytes
    source_chain_id: int

    @property
    def deposit_id_hex(self) -> str:
        return "0x" + self.deposit_id.hex()

    def as_args(self) -> tuple[str, int, bytes, int]:
        """Positional arguments for `claim(recipient, amount, depositId, sourceChainId)`."""
        return (self.recipient, self.amount, self.deposit_id, self.source_chain_id)


@dataclass
class SubmissionResult:
    """Result of submitting a claim transaction."""

    success: bool
    tx_hash: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    retryable: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, tx_hash: str) -> "SubmissionResult":
        return cls(success=True, tx_hash=tx_hash)

    @classmethod
    def failed(cls, kind: ErrorKind, retryable: bool, error: str) -> "SubmissionResult":
        return cls(success=False, error_kind=kind, retryable=retryable, error=error)
