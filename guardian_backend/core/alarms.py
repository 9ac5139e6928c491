"""
Cancellable alarms.

Every long wait in a walk (response timeout, grace window, periodic prompt,
signal check) is an Alarm armed on a Scheduler instead of a blocking sleep.

An Alarm can be cancelled any number of times, before or after it fired.
A callback that was already dispatched when cancel() ran still checks the
cancelled flag before doing anything, so callers never depend on cancellation
being instantaneous.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, ContextManager, Optional

logger = logging.getLogger("guardian.alarms")


class Alarm:
    def __init__(
        self,
        callback: Callable[[], Any],
        guard: Optional[ContextManager] = None,
        name: str = "alarm",
    ) -> None:
        self.name = name
        self._callback = callback
        self._guard = guard
        self._handle: Any = None
        self._cancelled = False
        self._fired = False

    @property
    def pending(self) -> bool:
        return not (self._cancelled or self._fired)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, handle: Any) -> None:
        """Bind the scheduler-specific handle (e.g. asyncio.TimerHandle)."""
        self._handle = handle
        if self._cancelled and handle is not None:
            handle.cancel()

    def cancel(self) -> None:
        if not self.pending:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()

    def fire(self) -> None:
        with self._guard if self._guard is not None else contextlib.nullcontext():
            if not self.pending:
                return
            self._fired = True
            try:
                self._callback()
            except Exception:
                # A broken callback must not take down the event loop.
                logger.exception("alarm %s callback failed", self.name)


class Scheduler(ABC):
    """Clock plus alarm factory. Subclasses decide how alarms get armed."""

    def now(self) -> float:
        return time.time()

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Any],
        guard: Optional[ContextManager] = None,
        name: str = "alarm",
    ) -> Alarm:
        alarm = Alarm(callback, guard=guard, name=name)
        self._arm(max(delay, 0.0), alarm)
        return alarm

    @abstractmethod
    def _arm(self, delay: float, alarm: Alarm) -> None:
        ...


class LoopScheduler(Scheduler):
    """Arms alarms on an asyncio event loop; safe to call from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def _arm(self, delay: float, alarm: Alarm) -> None:
        if self._in_loop_thread():
            alarm.attach(self._loop.call_later(delay, alarm.fire))
        else:
            self._loop.call_soon_threadsafe(
                lambda: alarm.attach(self._loop.call_later(delay, alarm.fire))
            )

    def _in_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False


class SerializedScheduler(Scheduler):
    """Wraps another scheduler so every alarm callback runs under `lock`."""

    def __init__(self, inner: Scheduler, lock: threading.RLock) -> None:
        self._inner = inner
        self._lock = lock

    def now(self) -> float:
        return self._inner.now()

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Any],
        guard: Optional[ContextManager] = None,
        name: str = "alarm",
    ) -> Alarm:
        return self._inner.call_later(delay, callback, guard=guard or self._lock, name=name)

    def _arm(self, delay: float, alarm: Alarm) -> None:
        self._inner._arm(delay, alarm)
