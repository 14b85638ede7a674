"""
Error types raised by the bridge relayer.
"""

from typing import Optional


class RelayerError(Exception):
    """Base class for relayer errors."""


class ConfigError(RelayerError):
    """Invalid or incomplete relayer configuration."""


class SubscriptionError(RelayerError):
    """Event stream could not be set up or broke while running."""

    def __init__(self, chain: str, message: str):
        self.chain = chain
        self.message = message
        super().__init__(f"[{chain}] subscription error: {message}")


class EventDecodeError(SubscriptionError):
    """A delivered log record could not be turned into a DepositEvent."""


class ConnectivityError(RelayerError):
    """Startup liveness check against a chain client failed."""

    def __init__(self, chain: str, message: str):
        self.chain = chain
        self.message = message
        super().__init__(f"[{chain}] connectivity error: {message}")


class SubmissionError(RelayerError):
    """
    Claim transaction could not be submitted.

    Chain clients raise this when they already know how a failure should be
    classified (e.g. a reverted receipt); `retryable` decides whether the
    coordinator may resubmit the same claim.
    """

    def __init__(self, message: str, kind: Optional[str] = None, retryable: bool = False):
        self.message = message
        self.kind = kind
        self.retryable = retryable
        super().__init__(message)
