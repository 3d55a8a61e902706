"""Task helpers for cancellable periodic background work."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from tunnelport.utils.time import Clock

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    """Lifecycle states of a periodic task."""

    WAITING = "waiting"
    RUNNING = "running"
    STOPPED = "stopped"


class PeriodicTask:
    """Runs an async callback every ``interval`` seconds until stopped.

    Every wait and every callback run is raced against ``stop_event``, so a
    stop request is observed while idle and, best effort, while the callback
    is in flight. Exceptions raised by the callback end the loop and
    propagate to the caller of :meth:`run`.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        interval: float,
        *,
        clock: Clock | None = None,
        stop_event: asyncio.Event | None = None,
        name: str = "periodic",
    ) -> None:
        """Initialize periodic task.

        Args:
            callback: Coroutine function invoked on every tick
            interval: Seconds to wait before each run
            clock: Clock used for waiting (virtual clocks in tests)
            stop_event: Event that stops the task once set
            name: Name used in log messages

        """
        if interval <= 0:
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)
        self.callback = callback
        self.interval = interval
        self.clock = clock or Clock()
        self.stop_event = stop_event or asyncio.Event()
        self.name = name
        self.state = TaskState.WAITING
        self.runs = 0

    def stop(self) -> None:
        """Request the task to stop."""
        self.stop_event.set()

    async def run(self) -> TaskState:
        """Run until stopped.

        Returns:
            TaskState.STOPPED once the stop event is observed

        """
        try:
            while True:
                self.state = TaskState.WAITING
                if not await self._until_stopped(self.clock.sleep(self.interval)):
                    break
                self.state = TaskState.RUNNING
                if not await self._until_stopped(self.callback()):
                    break
                self.runs += 1
        finally:
            self.state = TaskState.STOPPED
        logger.debug("%s task stopped after %d run(s)", self.name, self.runs)
        return self.state

    async def _until_stopped(self, aw: Awaitable[Any]) -> bool:
        """Await ``aw`` unless the stop event fires first.

        Returns:
            True if ``aw`` completed, False if the task was stopped

        """
        work = asyncio.ensure_future(aw)
        if self.stop_event.is_set():
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await work
            return False

        stopper = asyncio.ensure_future(self.stop_event.wait())
        try:
            await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not work.done():
                work.cancel()

        if work.cancelled() or not work.done():
            with contextlib.suppress(asyncio.CancelledError):
                await work
            return False
        # Propagates callback exceptions
        work.result()
        return True
