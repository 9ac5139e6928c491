"""
WalkSession: owns one walk and every component living inside it.

All state changes go through one re-entrant lock. Alarm callbacks are armed
on a SerializedScheduler, so they take the same lock and re-check their own
cancellation once they hold it; nothing armed by a walk can run after end()
returns.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from typing import Optional, Protocol, Sequence

from core.alarms import Alarm, Scheduler, SerializedScheduler
from core.checkin import CheckInCycle
from core.contact_channel import ContactChannel
from core.errors import ConfigurationError, PermissionDenied
from core.escalation import EscalationCoordinator
from core.geo import LastKnownLocation
from core.location_log import LocationLogClient
from core.prompter import PeriodicPrompter
from core.stationary import StationaryDetector
from core.vitals import VitalsEvent, VitalsEventType, VitalsWatchdog
from schemas.walk import (
    AuthenticationOutcome,
    AuthFailureKind,
    CheckInReason,
    CheckInRequest,
    CheckInState,
    EscalationEvent,
    PositionFix,
    VitalsSample,
    WalkPhase,
    WalkSettings,
    WalkStatus,
)

logger = logging.getLogger("guardian.session")

# Without any wearable sample by then, fall back to periodic check-ins.
WEARABLE_GRACE_SECONDS: float = 45.0


class PromptSurface(Protocol):
    def present_check_in(self, request: CheckInRequest) -> None: ...

    def dismiss_check_in(self) -> None: ...

    def status_changed(self, status: WalkStatus) -> None: ...


class WearableLink(Protocol):
    def send_heart_rate_threshold(self, bpm: float) -> None: ...


def status_text(
    *,
    phase: WalkPhase,
    check_in_state: CheckInState,
    failed_check_ins: int = 0,
    has_contact: bool = True,
    notifications_denied: bool = False,
    location_denied: bool = False,
    periodic_interval_minutes: Optional[float] = None,
    signal_lost: bool = False,
) -> str:
    """User-facing status line; derived only from the arguments."""
    if phase is WalkPhase.ENDED:
        return "Walk ended."
    if phase is WalkPhase.IDLE:
        if not has_contact:
            return "Add an emergency contact to start a walk."
        return "Ready to start your safe walk."
    if check_in_state is CheckInState.ESCALATED:
        return "No response. Your emergency contact has been notified with your location."
    if check_in_state is CheckInState.AWAITING_RESPONSE:
        text = 'Check-in sent. Tap "I\'m Safe" when you see the alert.'
        if failed_check_ins:
            text += f" Failed attempts: {failed_check_ins}."
        return text
    if check_in_state is CheckInState.RESPONDED_SAFE:
        return "You're safe. We'll keep monitoring."
    if notifications_denied:
        return "Enable notifications for check-in alerts."
    if periodic_interval_minutes is not None:
        return f"Watch not detected. Checking in every {periodic_interval_minutes:g} minutes."
    if signal_lost:
        return "Heart rate signal lost. Keep your watch nearby."
    if location_denied:
        return "Location unavailable. Monitoring heart rate only."
    return "Monitoring your route and heart rate..."


class WalkSession:
    def __init__(
        self,
        settings: WalkSettings,
        scheduler: Scheduler,
        surface: Optional[PromptSurface] = None,
        wearable: Optional[WearableLink] = None,
        channels: Sequence[ContactChannel] = (),
        location_log: Optional[LocationLogClient] = None,
        executor: Optional[Executor] = None,
        grace_seconds: float = WEARABLE_GRACE_SECONDS,
    ) -> None:
        self._lock = threading.RLock()
        self._scheduler = SerializedScheduler(scheduler, self._lock)
        self.settings = settings
        self.surface = surface
        self.wearable = wearable
        self.channels = list(channels)
        self.location_log = location_log
        self._executor = executor
        self.grace_seconds = grace_seconds

        self.phase = WalkPhase.IDLE
        self.location = LastKnownLocation()
        self.cycle = CheckInCycle(self._scheduler)
        self.detector: Optional[StationaryDetector] = None
        self.watchdog: Optional[VitalsWatchdog] = None
        self.prompter: Optional[PeriodicPrompter] = None
        self.escalation: Optional[EscalationCoordinator] = None

        self.permission_issues: list[PermissionDenied] = []
        self._grace: Optional[Alarm] = None
        self._grace_elapsed = False
        self._wearable_seen = False
        self._signal_lost = False

    # ── lifecycle ──

    @property
    def active(self) -> bool:
        return self.phase is WalkPhase.MONITORING

    def start(
        self,
        location_granted: bool = True,
        notifications_granted: bool = True,
        settings: Optional[WalkSettings] = None,
    ) -> WalkStatus:
        with self._lock:
            if settings is not None:
                self.settings = settings
            contact = self.settings.emergency_contact
            if contact is None:
                raise ConfigurationError("missing-contact")

            if self.active:
                logger.info("walk restarted while active; tearing down the previous walk")
                self._teardown()
                if self.surface is not None:
                    self.surface.dismiss_check_in()

            self.location.clear()
            self._grace_elapsed = False
            self._wearable_seen = False
            self._signal_lost = False
            self.permission_issues = []
            if not location_granted:
                self.permission_issues.append(PermissionDenied("location"))
            if not notifications_granted:
                self.permission_issues.append(PermissionDenied("notifications"))
            for issue in self.permission_issues:
                logger.warning("%s; walk continues in degraded mode", issue)

            self.detector = StationaryDetector(self.settings.safe_zone)
            self.detector.on_stationary = self._on_stationary

            self.watchdog = VitalsWatchdog(self._scheduler, self.settings.heart_rate_threshold)
            self.watchdog.on_event = self._on_vitals_event

            self.prompter = PeriodicPrompter(self._scheduler, self.settings.check_in_interval_minutes)
            self.prompter.on_prompt = self._on_periodic_prompt

            self.cycle = CheckInCycle(self._scheduler)
            self.cycle.on_present = self._present
            self.cycle.on_dismiss = self._dismiss
            self.cycle.on_safe = self._on_safe
            self.cycle.on_escalate = self._on_timeout

            self.escalation = EscalationCoordinator(
                contact,
                self._scheduler,
                self.location,
                channels=self.channels,
                location_log=self.location_log,
                executor=self._executor,
            )
            self.escalation.on_escalation = self._on_escalation

            self.watchdog.start()
            if self.wearable is not None:
                self.wearable.send_heart_rate_threshold(self.settings.heart_rate_threshold)
            self._grace = self._scheduler.call_later(
                self.grace_seconds, self._on_grace_elapsed, name="wearable-grace"
            )
            self.phase = WalkPhase.MONITORING
            logger.info("walk started; contact %s", contact.name)
            return self._publish()

    def end(self) -> bool:
        with self._lock:
            if not self.active:
                return False
            self._teardown()
            self.phase = WalkPhase.ENDED
            if self.surface is not None:
                self.surface.dismiss_check_in()
            logger.info("walk ended")
            self._publish()
            return True

    def _teardown(self) -> None:
        if self.detector is not None:
            self.detector.reset()
        if self.watchdog is not None:
            self.watchdog.stop()
        if self.prompter is not None:
            self.prompter.cancel()
        if self._grace is not None:
            self._grace.cancel()
            self._grace = None
        self.cycle.cancel()

    def update_settings(self, settings: WalkSettings) -> None:
        """Threshold and interval apply immediately; zone and contact on the next walk."""
        with self._lock:
            self.settings = settings
            if self.wearable is not None:
                self.wearable.send_heart_rate_threshold(settings.heart_rate_threshold)
            if self.active:
                self.watchdog.set_threshold(settings.heart_rate_threshold)
                self.prompter.set_interval(settings.check_in_interval_minutes)
                self._publish()

    # ── signal inputs ──

    def observe_fix(self, fix: PositionFix) -> bool:
        with self._lock:
            if not self.active:
                return False
            self.location.set(fix)
            if self._denied("location"):
                return False
            return self.detector.observe(fix)

    def observe_vitals(self, sample: VitalsSample) -> list[VitalsEvent]:
        with self._lock:
            if not self.active:
                return []
            self._wearable_seen = True
            self._signal_lost = False
            if self.prompter.armed:
                logger.info("wearable is back; stopping periodic check-ins")
                self.prompter.cancel()
            return self.watchdog.observe(sample)

    # ── user responses ──

    def respond_safe(self) -> bool:
        with self._lock:
            return self.active and self.cycle.respond_safe()

    def authentication_succeeded(self) -> bool:
        with self._lock:
            return self.active and self.cycle.authentication_succeeded()

    def authentication_failed(self, kind: AuthFailureKind) -> bool:
        with self._lock:
            if not self.active or not self.cycle.authentication_failed(kind):
                return False
            self._publish()
            return True

    def record_authentication(self, outcome: AuthenticationOutcome) -> bool:
        if outcome.succeeded:
            return self.authentication_succeeded()
        return self.authentication_failed(outcome.failure_kind or AuthFailureKind.OTHER)

    # ── read model ──

    @property
    def check_in_state(self) -> CheckInState:
        return self.cycle.state

    @property
    def consecutive_failed_check_ins(self) -> int:
        return self.cycle.consecutive_failures

    @property
    def status_text(self) -> str:
        with self._lock:
            periodic = self.prompter is not None and self.prompter.armed
            return status_text(
                phase=self.phase,
                check_in_state=self.cycle.state,
                failed_check_ins=self.cycle.consecutive_failures,
                has_contact=self.settings.emergency_contact is not None,
                notifications_denied=self._denied("notifications"),
                location_denied=self._denied("location"),
                periodic_interval_minutes=self.prompter.interval_minutes if periodic else None,
                signal_lost=self._signal_lost and self._wearable_seen,
            )

    def snapshot(self) -> WalkStatus:
        with self._lock:
            return WalkStatus(
                active=self.active,
                phase=self.phase,
                status_text=self.status_text,
                check_in_state=self.cycle.state,
                live_request=self.cycle.request if self.cycle.awaiting else None,
                consecutive_failed_check_ins=self.cycle.consecutive_failures,
                last_known_location=self.location.get(),
                current_heart_rate=self.watchdog.current_bpm if self.watchdog else None,
                in_safe_zone=bool(self.detector and self.detector.in_safe_zone),
                periodic_prompts_active=bool(self.prompter and self.prompter.armed),
                escalation_in_progress=bool(self.escalation and self.escalation.in_progress),
                escalation_attempts=self.escalation.attempts if self.escalation else 0,
            )

    # ── internal wiring ──

    def _denied(self, permission: str) -> bool:
        return any(issue.permission == permission for issue in self.permission_issues)

    def _raise_check_in(self, reason: CheckInReason, bpm: Optional[float] = None) -> bool:
        if not self.cycle.can_issue:
            logger.info("%s signal dropped: check-in already %s", reason.value, self.cycle.state.value)
            return False
        request = CheckInRequest(
            reason=reason,
            issued_at=self._scheduler.now(),
            source_location=self.location.get(),
            bpm=bpm,
        )
        return self.cycle.issue(request)

    def _on_stationary(self, fix: PositionFix) -> None:
        self._raise_check_in(CheckInReason.STATIONARY_TOO_LONG)

    def _on_vitals_event(self, event: VitalsEvent) -> None:
        if event.type is VitalsEventType.FIRST_SAMPLE:
            logger.info("wearable detected")
        elif event.type is VitalsEventType.SPIKE:
            self._raise_check_in(CheckInReason.VITALS_SPIKE, bpm=event.bpm)
        elif event.type is VitalsEventType.NOT_DETECTED:
            self._raise_check_in(CheckInReason.VITALS_NOT_DETECTED)
        elif event.type is VitalsEventType.SIGNAL_LOST:
            self._on_signal_lost()

    def _on_signal_lost(self) -> None:
        first_report = not self._signal_lost
        self._signal_lost = True
        if self._grace_elapsed and not self.prompter.armed:
            logger.warning("heart rate signal lost; starting periodic check-ins")
            self.prompter.arm()
        if first_report:
            self._publish()

    def _on_grace_elapsed(self) -> None:
        self._grace = None
        self._grace_elapsed = True
        if self._wearable_seen:
            return
        logger.warning("no wearable after %.0fs; starting periodic check-ins", self.grace_seconds)
        self.prompter.arm()
        self._publish()

    def _on_periodic_prompt(self) -> bool:
        return self._raise_check_in(CheckInReason.PERIODIC_PROMPT)

    def _present(self, request: CheckInRequest) -> None:
        if self.surface is not None:
            self.surface.present_check_in(request)
        self._publish()

    def _dismiss(self) -> None:
        if self.surface is not None:
            self.surface.dismiss_check_in()

    def _on_safe(self, request: CheckInRequest) -> None:
        self.prompter.restart()
        self._publish()

    def _on_timeout(self, request: CheckInRequest) -> None:
        self.escalation.handle_escalation(self.location.get() or request.source_location)

    def _on_escalation(self, event: EscalationEvent) -> None:
        self._publish()

    def _publish(self) -> WalkStatus:
        status = self.snapshot()
        if self.surface is not None:
            self.surface.status_changed(status)
        return status
