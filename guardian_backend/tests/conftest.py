from __future__ import annotations

import heapq
import itertools

import pytest

from core.alarms import Alarm, Scheduler
from schemas.walk import CheckInRequest, EmergencyContact, PositionFix, WalkSettings, WalkStatus


class FakeScheduler(Scheduler):
    """Virtual clock; alarms fire in due order only when the test advances time."""

    def __init__(self, start: float = 0.0) -> None:
        self.clock = start
        self._queue: list = []
        self._seq = itertools.count()
        self.fired: list[str] = []

    def now(self) -> float:
        return self.clock

    def _arm(self, delay: float, alarm: Alarm) -> None:
        heapq.heappush(self._queue, (self.clock + delay, next(self._seq), alarm))

    @property
    def pending(self) -> list[Alarm]:
        return [alarm for _, _, alarm in self._queue if alarm.pending]

    def advance(self, seconds: float) -> None:
        self.advance_to(self.clock + seconds)

    def advance_to(self, target: float) -> None:
        while self._queue and self._queue[0][0] <= target:
            due, _, alarm = heapq.heappop(self._queue)
            self.clock = due
            if alarm.pending:
                self.fired.append(alarm.name)
            alarm.fire()
        self.clock = max(self.clock, target)


class RecordingSurface:
    def __init__(self) -> None:
        self.presented: list[CheckInRequest] = []
        self.dismissed = 0
        self.statuses: list[WalkStatus] = []

    def present_check_in(self, request: CheckInRequest) -> None:
        self.presented.append(request)

    def dismiss_check_in(self) -> None:
        self.dismissed += 1

    def status_changed(self, status: WalkStatus) -> None:
        self.statuses.append(status)


class RecordingWearable:
    def __init__(self) -> None:
        self.thresholds: list[float] = []

    def send_heart_rate_threshold(self, bpm: float) -> None:
        self.thresholds.append(bpm)


class RecordingChannel:
    def __init__(self, name: str = "recorder") -> None:
        self.name = name
        self.events = []

    def deliver(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()


@pytest.fixture
def wearable() -> RecordingWearable:
    return RecordingWearable()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def contact() -> EmergencyContact:
    return EmergencyContact(name="Sam", phone_number="+1 (555) 010-2030", email="sam@example.com")


@pytest.fixture
def settings(contact) -> WalkSettings:
    return WalkSettings(emergency_contact=contact)


def fix_at(t: float, lat: float = 33.7756, lon: float = -84.3963) -> PositionFix:
    return PositionFix(timestamp=t, latitude=lat, longitude=lon)
