"""
Tests for DepositEvent normalization.
"""

import pytest

from bridge_relayer.errors import EventDecodeError, SubscriptionError
from bridge_relayer.models import (
    DepositEvent,
    ErrorKind,
    SubmissionResult,
    deposit_id_to_bytes,
)

from fakes import CHAIN_A_ID, CHAIN_B_ID, SENDER, bridge_log, deposit_id


class TestDepositIdNormalization:
    def test_bytes_pass_through(self) -> None:
        assert deposit_id_to_bytes(b"\x01" * 32) == b"\x01" * 32

    def test_hex_with_and_without_prefix(self) -> None:
        expected = bytes.fromhex("ab" * 32)
        assert deposit_id_to_bytes("0x" + "ab" * 32) == expected
        assert deposit_id_to_bytes("ab" * 32) == expected

    def test_wrong_length_rejected(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            deposit_id_to_bytes(b"\x01" * 31)

    def test_unsupported_type_rejected(self) -> None:
        with pytest.raises(ValueError):
            deposit_id_to_bytes(12345)


class TestDepositEventFromLog:
    """Tests for DepositEvent.from_log()."""

    def test_decodes_bridge_log(self) -> None:
        record = bridge_log(deposit=1, destination_chain_id=CHAIN_B_ID, amount=1000)

        event = DepositEvent.from_log(record, CHAIN_A_ID)

        assert event.sender == SENDER
        assert event.amount == 1000
        assert event.deposit_id == deposit_id(1)
        assert event.source_chain_id == CHAIN_A_ID
        assert event.destination_chain_id == CHAIN_B_ID
        assert event.block_number == 100
        assert event.log_index == 0
        assert event.tx_hash == "0x" + "01" * 32

    def test_deposit_id_hex(self) -> None:
        event = DepositEvent.from_log(bridge_log(deposit=255), CHAIN_A_ID)
        assert event.deposit_id_hex == "0x" + "00" * 31 + "ff"

    def test_string_values_from_tron_style_decoders(self) -> None:
        """Decoders that return numbers as strings are accepted."""
        record = {
            "args": {
                "sender": SENDER,
                "amount": "1000",
                "depositId": "0x" + "01" * 32,
                "destinationChainId": str(CHAIN_A_ID),
            }
        }

        event = DepositEvent.from_log(record, CHAIN_B_ID)

        assert event.amount == 1000
        assert event.destination_chain_id == CHAIN_A_ID
        assert event.tx_hash is None

    def test_missing_argument_is_decode_error(self) -> None:
        record = bridge_log()
        del record["args"]["amount"]

        with pytest.raises(EventDecodeError, match="malformed"):
            DepositEvent.from_log(record, CHAIN_A_ID)

    def test_missing_args_is_decode_error(self) -> None:
        with pytest.raises(EventDecodeError):
            DepositEvent.from_log({"blockNumber": 1}, CHAIN_A_ID)

    def test_bad_deposit_id_is_decode_error(self) -> None:
        record = bridge_log()
        record["args"]["depositId"] = b"\x00" * 8

        with pytest.raises(EventDecodeError):
            DepositEvent.from_log(record, CHAIN_A_ID)

    def test_negative_amount_is_decode_error(self) -> None:
        record = bridge_log(amount=-1)

        with pytest.raises(EventDecodeError, match="negative"):
            DepositEvent.from_log(record, CHAIN_A_ID)

    def test_decode_error_is_subscription_error(self) -> None:
        """Decode failures fault the stream like transport errors."""
        assert issubclass(EventDecodeError, SubscriptionError)

    def test_event_is_immutable(self) -> None:
        event = DepositEvent.from_log(bridge_log(), CHAIN_A_ID)
        with pytest.raises(AttributeError):
            event.amount = 1  # type: ignore[misc]


class TestSubmissionResult:
    def test_ok(self) -> None:
        result = SubmissionResult.ok("0xabc")
        assert result.success
        assert result.tx_hash == "0xabc"
        assert result.error_kind is None

    def test_failed(self) -> None:
        result = SubmissionResult.failed(ErrorKind.TIMEOUT, True, "timed out")
        assert not result.success
        assert result.retryable
        assert result.error_kind is ErrorKind.TIMEOUT
