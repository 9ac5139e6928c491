from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.alarms import Alarm, Scheduler
from schemas.walk import VitalsSample

logger = logging.getLogger("guardian.vitals")

DEFAULT_SPIKE_THRESHOLD_BPM: float = 120.0
SIGNAL_CHECK_SECONDS: float = 30.0
# A sample older than this means the wearable link is gone.
SIGNAL_STALE_SECONDS: float = 30.0


class VitalsEventType(str, enum.Enum):
    FIRST_SAMPLE = "first_sample"
    HEART_RATE = "heart_rate"
    SPIKE = "spike"
    NOT_DETECTED = "not_detected"
    SIGNAL_LOST = "signal_lost"


@dataclass(frozen=True)
class VitalsEvent:
    type: VitalsEventType
    at: float
    bpm: Optional[float] = None


class VitalsWatchdog:
    """
    Turns the wearable's heart-rate stream into anomaly events.
    Reports upward only; never decides on escalation.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        threshold_bpm: float = DEFAULT_SPIKE_THRESHOLD_BPM,
        check_seconds: float = SIGNAL_CHECK_SECONDS,
        stale_seconds: float = SIGNAL_STALE_SECONDS,
    ) -> None:
        self._scheduler = scheduler
        self.threshold_bpm = threshold_bpm
        self.check_seconds = check_seconds
        self.stale_seconds = stale_seconds
        self.on_event: Optional[Callable[[VitalsEvent], None]] = None

        self.last_sample_at: Optional[float] = None
        self.current_bpm: Optional[float] = None
        self._ticker: Optional[Alarm] = None

    @property
    def running(self) -> bool:
        return self._ticker is not None

    def start(self) -> None:
        self.stop()
        self._schedule_tick()

    def stop(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def set_threshold(self, bpm: float) -> None:
        self.threshold_bpm = bpm

    def observe(self, sample: VitalsSample) -> list[VitalsEvent]:
        now = self._scheduler.now()
        events: list[VitalsEvent] = []

        if self.last_sample_at is None:
            events.append(VitalsEvent(VitalsEventType.FIRST_SAMPLE, now))
        self.last_sample_at = now

        if not sample.detected:
            logger.warning("wearable reports heart rate not detected")
            self.current_bpm = None
            events.append(VitalsEvent(VitalsEventType.NOT_DETECTED, now))
        else:
            self.current_bpm = sample.bpm
            events.append(VitalsEvent(VitalsEventType.HEART_RATE, now, sample.bpm))
            if sample.bpm >= self.threshold_bpm:
                logger.info("heart rate spike: %d bpm (threshold %d)", sample.bpm, self.threshold_bpm)
                events.append(VitalsEvent(VitalsEventType.SPIKE, now, sample.bpm))

        for event in events:
            self._emit(event)
        return events

    def check_signal(self) -> Optional[VitalsEvent]:
        now = self._scheduler.now()
        if self.last_sample_at is not None and now - self.last_sample_at <= self.stale_seconds:
            return None
        event = VitalsEvent(VitalsEventType.SIGNAL_LOST, now)
        self._emit(event)
        return event

    def _schedule_tick(self) -> None:
        self._ticker = self._scheduler.call_later(self.check_seconds, self._tick, name="vitals-signal-check")

    def _tick(self) -> None:
        self._schedule_tick()
        self.check_signal()

    def _emit(self, event: VitalsEvent) -> None:
        if self.on_event:
            self.on_event(event)
