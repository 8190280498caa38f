"""
Reconnection policy.

Two timescales:
- Fast: exponential backoff, delay = min(base * 2^(n-1), cap) for n = 1..max
- Slow: once attempts exceed max, one fixed extended cooldown, after which
  the attempt counter resets and the fast schedule starts over

The loop never gives up on its own; only logout or removal stops it.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ReconnectDelay:
    """
    Next scheduled retry.

    Attributes:
        delay: Seconds until the retry
        attempt: Attempt number this retry counts as
        extended: True when this is the extended cooldown
    """

    delay: float
    attempt: int
    extended: bool = False


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Reconnect timing.

    Example:
        policy = ReconnectPolicy(base=30.0, cap=120.0, max_attempts=3)
        # Attempt 1: 30s, Attempt 2: 60s, Attempt 3: 120s, then 600s cooldown
    """

    base: float = 30.0
    cap: float = 120.0
    max_attempts: int = 3
    extended_cooldown: float = 600.0

    def backoff(self, attempt: int) -> float:
        """Fast-schedule delay for a 1-indexed attempt."""
        return min(self.base * (2 ** (attempt - 1)), self.cap)

    def next_delay(self, attempt: int) -> ReconnectDelay:
        """
        Compute the retry for the given attempt count.

        Args:
            attempt: Attempt number after incrementing (1-indexed)

        Returns:
            The fast-schedule delay, or the extended cooldown once attempt
            exceeds max_attempts
        """
        if attempt > self.max_attempts:
            return ReconnectDelay(delay=self.extended_cooldown, attempt=attempt, extended=True)
        return ReconnectDelay(delay=self.backoff(attempt), attempt=attempt)

    @property
    def throttle_interval(self) -> float:
        """Minimum spacing between manual connect attempts."""
        return self.base
