"""Timer backends for the coordinator.

The coordinator never sleeps; it asks a :class:`Scheduler` to call it back.
Implementations must return immediately and must never invoke the callback
synchronously from ``call_later``, because the coordinator arms timers
while holding its lock.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Protocol

_logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Structural timer interface used by the coordinator.

    Having a protocol here makes it easy to pass a manual scheduler in
    tests while keeping the production implementations concrete.
    """

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """Runs each callback on its own daemon timer thread."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(delay, 0.0), callback)
        timer.daemon = True
        timer.start()
        return timer


class _LoopTimer:
    """Timer armed on an event loop from an arbitrary thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, callback: Callable[[], None]) -> None:
        self._loop = loop
        self._callback = callback
        self._cancelled = False
        self._handle: asyncio.TimerHandle | None = None
        self._lock = threading.Lock()

    def arm(self, delay: float) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._handle = self._loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._handle = None
        self._callback()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            handle, self._handle = self._handle, None
        if handle is None:
            # Not armed yet; ``arm`` sees the flag.
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            handle.cancel()
            return
        try:
            self._loop.call_soon_threadsafe(handle.cancel)
        except RuntimeError:
            _logger.debug("Timer not cancelled: event loop is closed")


class LoopScheduler:
    """Schedules callbacks on an asyncio event loop.

    Safe to call from any thread: arming always goes through
    ``call_soon_threadsafe`` so the loop thread owns every handle.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _LoopTimer(self._loop, callback)
        try:
            self._loop.call_soon_threadsafe(timer.arm, max(delay, 0.0))
        except RuntimeError:
            # Loop already closed; nothing will ever fire.
            _logger.debug("Timer not armed: event loop is closed")
            timer.cancel()
        return timer
