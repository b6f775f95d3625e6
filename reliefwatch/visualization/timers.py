"""
timers.py — Repeating timer service used for marker pulse animation.

`TimerService.schedule_interval(period, callback)` returns a `TimerHandle`
whose `cancel()` stops further callbacks. The visualizer only talks to this
interface; `AsyncioTimerService` is the event-loop-backed implementation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Set

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancellable handle for a repeating timer."""

    def cancel(self) -> None:
        raise NotImplementedError

    @property
    def cancelled(self) -> bool:
        raise NotImplementedError


class TimerService:
    """Schedules repeating callbacks."""

    def schedule_interval(self, period: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError

    @property
    def active_count(self) -> int:
        raise NotImplementedError


class _AsyncioIntervalHandle(TimerHandle):
    """Re-arms `loop.call_later` after each tick until cancelled."""

    def __init__(
        self,
        service: "AsyncioTimerService",
        loop: asyncio.AbstractEventLoop,
        period: float,
        callback: Callable[[], None],
    ):
        self._service = service
        self._loop = loop
        self._period = period
        self._callback = callback
        self._cancelled = False
        self._next: Optional[asyncio.TimerHandle] = None
        self._arm()

    def _arm(self) -> None:
        self._next = self._loop.call_later(self._period, self._tick)

    def _tick(self) -> None:
        if self._cancelled:
            return
        try:
            self._callback()
        except Exception:
            logger.exception("Interval callback failed; timer cancelled")
            self.cancel()
            return
        if not self._cancelled:
            self._arm()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._next is not None:
            self._next.cancel()
        self._service._handles.discard(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioTimerService(TimerService):
    """Timer service bound to an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: Set[_AsyncioIntervalHandle] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        # Must be called from inside the loop when none was given
        return self._loop or asyncio.get_running_loop()

    def schedule_interval(self, period: float, callback: Callable[[], None]) -> TimerHandle:
        if period <= 0:
            raise ValueError(f"Interval period must be positive, got {period}")
        handle = _AsyncioIntervalHandle(self, self._get_loop(), period, callback)
        self._handles.add(handle)
        return handle

    @property
    def active_count(self) -> int:
        return len(self._handles)
