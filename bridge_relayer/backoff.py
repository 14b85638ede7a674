"""
Delay policies for listener restarts and claim retries.
"""

import math
from dataclasses import dataclass
from typing import Protocol


class BackoffPolicy(Protocol):
    """Returns the delay in seconds before the given 1-based attempt."""

    def delay(self, attempt: int) -> float: ...


@dataclass(frozen=True)
class FixedBackoff:
    """Same delay before every attempt."""

    seconds: float = 5.0

    def delay(self, attempt: int) -> float:
        return self.seconds


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Delay grows by `factor` per attempt, starting at `initial` and capped at
    `max_delay`. The first attempt never waits less than `initial`.
    """

    initial: float = 5.0
    factor: float = 2.0
    max_delay: float = 300.0

    def delay(self, attempt: int) -> float:
        cap = max(self.max_delay, self.initial)
        if self.initial <= 0:
            return 0.0
        exponent = max(attempt - 1, 0)
        if self.factor > 1:
            # Beyond this exponent the cap applies, and factor**exponent would overflow
            exponent = min(exponent, math.ceil(math.log(cap / self.initial, self.factor)))
        return min(self.initial * (self.factor**exponent), cap)


def build_backoff(kind: str, initial: float, max_delay: float) -> BackoffPolicy:
    """Create a policy from its config name ("fixed" or "exponential")."""
    if kind == "fixed":
        return FixedBackoff(initial)
    if kind == "exponential":
        return ExponentialBackoff(initial=initial, max_delay=max_delay)
    raise ValueError(f"Unknown backoff kind: {kind}")
