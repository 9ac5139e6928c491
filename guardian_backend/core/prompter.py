from __future__ import annotations

import logging
from typing import Callable, Optional

from core.alarms import Alarm, Scheduler

logger = logging.getLogger("guardian.prompter")

DEFAULT_INTERVAL_MINUTES: float = 5.0
MIN_INTERVAL_MINUTES: float = 1.0
MAX_INTERVAL_MINUTES: float = 30.0


class PeriodicPrompter:
    """
    Fallback check-in cadence for walks without a wearable.

    The interval is a quiet period after the last confirmed safety, so
    restart() pushes the next prompt a full interval out. `on_prompt` returns
    whether a check-in was actually issued; a busy cycle means the tick is
    skipped, never queued.
    """

    def __init__(self, scheduler: Scheduler, interval_minutes: float = DEFAULT_INTERVAL_MINUTES) -> None:
        self._scheduler = scheduler
        self.interval_minutes = min(max(interval_minutes, MIN_INTERVAL_MINUTES), MAX_INTERVAL_MINUTES)
        self.on_prompt: Optional[Callable[[], bool]] = None

        self.prompts_issued = 0
        self.ticks_skipped = 0
        self._alarm: Optional[Alarm] = None

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60.0

    @property
    def armed(self) -> bool:
        return self._alarm is not None

    def arm(self) -> None:
        if self.armed:
            return
        logger.info("periodic check-ins every %g min", self.interval_minutes)
        self._schedule()

    def restart(self) -> None:
        """Start the quiet period over; no-op while disarmed."""
        if not self.armed:
            return
        self._alarm.cancel()
        self._schedule()

    def set_interval(self, minutes: float) -> None:
        self.interval_minutes = min(max(minutes, MIN_INTERVAL_MINUTES), MAX_INTERVAL_MINUTES)
        self.restart()

    def cancel(self) -> None:
        if self._alarm is not None:
            self._alarm.cancel()
            self._alarm = None
            logger.info("periodic check-ins stopped")

    def _schedule(self) -> None:
        self._alarm = self._scheduler.call_later(self.interval_seconds, self._tick, name="periodic-prompt")

    def _tick(self) -> None:
        self._schedule()
        issued = self.on_prompt() if self.on_prompt else False
        if issued:
            self.prompts_issued += 1
        else:
            self.ticks_skipped += 1
            logger.info("periodic check-in skipped: previous check-in unresolved")
