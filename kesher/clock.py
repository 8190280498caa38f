"""
Time and scheduling seams.

Instances never read the wall clock or call asyncio directly for timers;
they go through a Clock and a Scheduler so reconnect timing can be
driven deterministically in tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Source of time."""

    def monotonic(self) -> float:
        """Seconds from an arbitrary fixed point, for interval math."""
        ...

    def epoch_millis(self) -> int:
        """Current wall-clock time in milliseconds since the epoch."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Pause the caller for seconds."""
        ...


class SystemClock:
    """Clock backed by the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def epoch_millis(self) -> int:
        return int(time.time() * 1000)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def utc_iso(epoch_millis: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(epoch_millis / 1000, tz=UTC).isoformat()


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Runs a coroutine callback after a delay."""

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> TimerHandle:
        """
        Schedule callback to run after delay seconds.

        Returns:
            Handle whose cancel() prevents the callback from running
        """
        ...


class _AsyncioTimer:
    """Timer that spawns the callback as a task when it fires."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self._callback = callback
        self._task: asyncio.Task | None = None
        self._cancelled = False
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as e:
            logger.error(f"Scheduled callback failed: {e}", exc_info=True)

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    """Scheduler on the running asyncio event loop."""

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> TimerHandle:
        return _AsyncioTimer(delay, callback)


__all__ = [
    "AsyncioScheduler",
    "Clock",
    "Scheduler",
    "SystemClock",
    "TimerHandle",
    "utc_iso",
]
