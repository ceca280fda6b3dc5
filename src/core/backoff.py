"""Fibonacci backoff policy for request retries.

Delays grow along a short Fibonacci-like sequence instead of an unbounded
exponential curve, so a long retry chain levels off at a predictable ceiling.
"""

import secrets
from dataclasses import dataclass
from random import Random
from typing import Final

# Multipliers applied to the base delay; attempts past the end reuse the last one
FIBONACCI_MULTIPLIERS: Final[tuple[int, ...]] = (1, 2, 3, 5, 8, 13, 21, 34)

# Consecutive 429s within one call before the delay is scaled by the streak length
CONSECUTIVE_RATE_LIMIT_SCALING_THRESHOLD: Final = 3

DEFAULT_JITTER_RATIO: Final = 0.25

SECURE_RANDOM = secrets.SystemRandom()


def fibonacci_delay(attempt: int, base_delay_seconds: float) -> float:
    """Return the uncapped delay for a 0-based attempt.

    Negative attempts yield the base delay.
    """
    if attempt < 0:
        return base_delay_seconds
    index = min(attempt, len(FIBONACCI_MULTIPLIERS) - 1)
    return base_delay_seconds * FIBONACCI_MULTIPLIERS[index]


def add_jitter(delay: float, ratio: float = DEFAULT_JITTER_RATIO, rng: Random | None = None) -> float:
    """Add a uniformly random extra of up to ``ratio`` of the delay."""
    if delay <= 0:
        return delay
    source = rng or SECURE_RANDOM
    return delay + source.random() * delay * ratio


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Retry delay configuration.

    Attributes:
        base_delay_seconds: Delay unit multiplied by the Fibonacci sequence
        max_delay_seconds: Ceiling applied to every computed delay
        jitter_ratio: Upper bound of the random extra, as a fraction of the delay

    """

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = DEFAULT_JITTER_RATIO

    def __post_init__(self) -> None:
        if self.base_delay_seconds < 0:
            msg = f"base_delay_seconds must be non-negative, got {self.base_delay_seconds}"
            raise ValueError(msg)
        if self.max_delay_seconds < self.base_delay_seconds:
            msg = f"max_delay_seconds ({self.max_delay_seconds}) must be >= base_delay_seconds ({self.base_delay_seconds})"
            raise ValueError(msg)
        if not 0 <= self.jitter_ratio <= 1:
            msg = f"jitter_ratio must be within [0, 1], got {self.jitter_ratio}"
            raise ValueError(msg)

    def delay(self, attempt: int) -> float:
        """Capped Fibonacci delay for a 0-based attempt."""
        return min(fibonacci_delay(attempt, self.base_delay_seconds), self.max_delay_seconds)

    def rate_limit_delay(self, attempt: int, consecutive_rate_limits: int) -> float:
        """Delay after a 429 response, stretched during a sustained streak.

        Args:
            attempt: 0-based attempt that received the 429
            consecutive_rate_limits: Number of back-to-back 429s within the current call

        Returns:
            Delay in seconds, never above ``max_delay_seconds``

        """
        delay = self.delay(attempt)
        if consecutive_rate_limits >= CONSECUTIVE_RATE_LIMIT_SCALING_THRESHOLD:
            delay = min(delay * consecutive_rate_limits, self.max_delay_seconds)
        return delay

    def with_jitter(self, delay: float, rng: Random | None = None) -> float:
        return add_jitter(delay, self.jitter_ratio, rng)
