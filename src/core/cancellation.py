"""Cancellation context threaded through executor calls and enrichment.

A ``CancellationToken`` is the cooperative counterpart of task cancellation:
cancelling it unblocks waits that observe it (token acquisition, rate-limit
backoff) without tearing down requests that are already in flight.
"""

import asyncio
import contextlib

from core.exceptions import OperationCancelledError


class CancellationToken:
    """One-shot cancellation flag with awaitable waits."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """Return True once ``cancel`` has been called."""
        return self._event.is_set()

    def cancel(self, reason: str = "operation cancelled") -> None:
        """Cancel the context; later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError when the context is cancelled."""
        if self._event.is_set():
            raise OperationCancelledError(self.reason or "operation cancelled")

    async def wait(self) -> None:
        """Suspend until the context is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless cancelled first.

        Raises:
            OperationCancelledError: If the context is cancelled before or during the sleep

        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        self.raise_if_cancelled()


async def sleep_with_context(delay: float, ctx: CancellationToken | None) -> None:
    """Cancellation-aware sleep that degrades to a plain sleep without a context."""
    if ctx is None:
        await asyncio.sleep(delay)
    else:
        await ctx.sleep(delay)
