"""Token bucket rate limiting with adaptive downgrade on sustained overload.

The limiter state is an explicitly owned object: every executor gets its own
``RateLimiterState`` so several executors (or tests) never share hidden
counters.
"""

import asyncio
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

from core.cancellation import CancellationToken, sleep_with_context
from core.exceptions import OperationCancelledError

DEFAULT_REFILL_INTERVAL_SECONDS: Final = 0.25
DEFAULT_BURST: Final = 8
CONSERVATIVE_REFILL_INTERVAL_SECONDS: Final = 0.5
CONSERVATIVE_BURST: Final = 4
DEFAULT_OVERLOAD_THRESHOLD: Final = 10


@dataclass(frozen=True, slots=True)
class RateLimitProfile:
    """Refill cadence and burst capacity of a token bucket."""

    refill_interval_seconds: float
    burst: int

    def __post_init__(self) -> None:
        if self.refill_interval_seconds <= 0:
            msg = "refill_interval_seconds must be a positive number"
            raise ValueError(msg)
        if self.burst <= 0:
            msg = "burst must be a positive integer"
            raise ValueError(msg)


DEFAULT_PROFILE: Final = RateLimitProfile(DEFAULT_REFILL_INTERVAL_SECONDS, DEFAULT_BURST)
CONSERVATIVE_PROFILE: Final = RateLimitProfile(CONSERVATIVE_REFILL_INTERVAL_SECONDS, CONSERVATIVE_BURST)


class TokenBucketRateLimiter:
    """Token bucket granting ``burst`` immediate permits, refilled one per interval.

    ``acquire`` reserves a token up front and sleeps until the reservation
    matures, so concurrent callers are served in arrival order. A cancelled
    wait hands its reservation back.

    Attributes:
        profile: Refill interval and burst capacity
        total_requests: Number of granted permits
        total_wait_time: Cumulative seconds spent waiting for permits

    """

    def __init__(self, profile: RateLimitProfile, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize a full bucket.

        Args:
            profile: Refill interval and burst capacity
            clock: Monotonic time source, replaceable in tests

        """
        self.profile = profile
        self._clock = clock
        self._tokens = float(profile.burst)
        self._last_refill = clock()
        self._lock = threading.Lock()
        self.total_requests = 0
        self.total_wait_time = 0.0

    @property
    def refill_interval_seconds(self) -> float:
        return self.profile.refill_interval_seconds

    @property
    def burst(self) -> int:
        return self.profile.burst

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(float(self.profile.burst), self._tokens + elapsed / self.profile.refill_interval_seconds)
            self._last_refill = now

    def _return_token(self) -> None:
        with self._lock:
            self._tokens = min(float(self.profile.burst), self._tokens + 1.0)

    async def acquire(self, ctx: CancellationToken | None = None) -> float:
        """Wait for a permit.

        Args:
            ctx: Optional cancellation context observed while waiting

        Returns:
            float: Seconds spent waiting

        Raises:
            OperationCancelledError: If ``ctx`` is cancelled before the permit is granted

        """
        if ctx is not None:
            ctx.raise_if_cancelled()

        with self._lock:
            self._refill(self._clock())
            self._tokens -= 1.0
            wait_time = 0.0 if self._tokens >= 0 else -self._tokens * self.profile.refill_interval_seconds

        if wait_time > 0:
            try:
                await sleep_with_context(wait_time, ctx)
            except (OperationCancelledError, asyncio.CancelledError):
                self._return_token()
                raise

        with self._lock:
            self.total_requests += 1
            self.total_wait_time += wait_time
        return wait_time

    def available_tokens(self) -> float:
        """Tokens available right now (negative while callers are queued)."""
        with self._lock:
            self._refill(self._clock())
            return self._tokens

    def get_stats(self) -> dict[str, Any]:
        """Get current rate limiter statistics.

        Returns:
            Dictionary containing current stats and configuration

        """
        with self._lock:
            total_requests = self.total_requests
            total_wait_time = self.total_wait_time
        return {
            "refill_interval_seconds": self.profile.refill_interval_seconds,
            "burst": self.profile.burst,
            "total_requests": total_requests,
            "total_wait_time": total_wait_time,
            "avg_wait_time": total_wait_time / max(1, total_requests),
        }


class RateLimiterState:
    """Limiter and overload bookkeeping owned by one request executor.

    The consecutive 429 counter and the active bucket are mutated under one
    lock. Downgrading to the conservative profile is permanent for the
    lifetime of the state unless ``reset`` is called explicitly.
    """

    def __init__(
        self,
        default_profile: RateLimitProfile = DEFAULT_PROFILE,
        conservative_profile: RateLimitProfile = CONSERVATIVE_PROFILE,
        overload_threshold: int = DEFAULT_OVERLOAD_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if overload_threshold < 0:
            msg = "overload_threshold must be non-negative"
            raise ValueError(msg)
        self.default_profile = default_profile
        self.conservative_profile = conservative_profile
        self.overload_threshold = overload_threshold
        self._clock = clock
        self._lock = threading.Lock()
        self._limiter = TokenBucketRateLimiter(default_profile, clock)
        self._consecutive_rate_limits = 0
        self._downgraded = False

    @property
    def limiter(self) -> TokenBucketRateLimiter:
        with self._lock:
            return self._limiter

    @property
    def consecutive_rate_limits(self) -> int:
        with self._lock:
            return self._consecutive_rate_limits

    @property
    def downgraded(self) -> bool:
        with self._lock:
            return self._downgraded

    async def acquire(self, ctx: CancellationToken | None = None) -> float:
        """Acquire a permit from the currently active bucket."""
        return await self.limiter.acquire(ctx)

    def record_rate_limit(self) -> int:
        """Count one more 429 response and return the running streak."""
        with self._lock:
            self._consecutive_rate_limits += 1
            return self._consecutive_rate_limits

    def record_response(self) -> None:
        """Reset the streak after a successful (2xx) response."""
        with self._lock:
            self._consecutive_rate_limits = 0

    def is_overloaded(self) -> bool:
        with self._lock:
            return self._consecutive_rate_limits > self.overload_threshold

    def downgrade(self) -> bool:
        """Switch to the conservative bucket.

        Returns:
            True only for the call that performed the switch, so the caller
            can announce it exactly once

        """
        with self._lock:
            if self._downgraded:
                return False
            self._limiter = TokenBucketRateLimiter(self.conservative_profile, self._clock)
            self._downgraded = True
            return True

    def reset(self) -> None:
        """Restore the default bucket and clear the overload streak."""
        with self._lock:
            self._limiter = TokenBucketRateLimiter(self.default_profile, self._clock)
            self._consecutive_rate_limits = 0
            self._downgraded = False

    def get_stats(self) -> dict[str, Any]:
        stats = self.limiter.get_stats()
        with self._lock:
            stats["consecutive_rate_limits"] = self._consecutive_rate_limits
            stats["downgraded"] = self._downgraded
        return stats
