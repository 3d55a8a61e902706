"""Monotonic clock used by the renewal scheduling.

Injected wherever code waits or computes lease expiry, so tests can swap in
a virtual clock and drive time by hand.
"""

from __future__ import annotations

import asyncio
import time


class Clock:
    """Monotonic time source with an awaitable sleep."""

    def now(self) -> float:
        """Seconds on the monotonic clock (unrelated to wall time)."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def deadline(self, seconds: float) -> float:
        """Clock reading ``seconds`` from now."""
        return self.now() + seconds

    def remaining(self, deadline: float) -> float:
        """Seconds left until ``deadline``, never negative."""
        return max(deadline - self.now(), 0.0)
