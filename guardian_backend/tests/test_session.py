import pytest

from core.errors import ConfigurationError
from core.session import WalkSession, status_text
from schemas.walk import (
    AuthenticationOutcome,
    AuthFailureKind,
    CheckInReason,
    CheckInState,
    VitalsSample,
    WalkPhase,
    WalkSettings,
)

from conftest import fix_at


@pytest.fixture
def session(settings, scheduler, surface, wearable, channel):
    return WalkSession(settings, scheduler, surface=surface, wearable=wearable, channels=[channel])


def _sample(scheduler, bpm):
    return VitalsSample(bpm=bpm, timestamp=scheduler.now())


def test_start_requires_emergency_contact(scheduler, surface):
    session = WalkSession(WalkSettings(), scheduler, surface=surface)
    with pytest.raises(ConfigurationError) as info:
        session.start()
    assert info.value.reason == "missing-contact"
    assert session.phase is WalkPhase.IDLE
    assert scheduler.pending == []
    assert session.status_text == "Add an emergency contact to start a walk."


def test_start_pushes_threshold_and_publishes(session, wearable, surface):
    status = session.start()
    assert status.active
    assert status.phase is WalkPhase.MONITORING
    assert status.check_in_state is CheckInState.IDLE
    assert status.status_text == "Monitoring your route and heart rate..."
    assert wearable.thresholds == [120]
    assert surface.statuses[-1] == status


def test_no_wearable_falls_back_to_periodic_check_ins_and_escalates(session, scheduler, surface, channel):
    session.start()
    session.observe_fix(fix_at(10))

    scheduler.advance_to(45)
    assert session.prompter.armed
    assert session.status_text == "Watch not detected. Checking in every 5 minutes."

    scheduler.advance_to(345)
    assert [r.reason for r in surface.presented] == [CheckInReason.PERIODIC_PROMPT]
    assert session.check_in_state is CheckInState.AWAITING_RESPONSE

    scheduler.advance_to(360)
    session.authentication_failed(AuthFailureKind.FAILED)
    session.authentication_failed(AuthFailureKind.FAILED)
    assert session.consecutive_failed_check_ins == 2
    assert channel.events == []

    scheduler.advance_to(405)
    assert session.check_in_state is CheckInState.ESCALATED
    assert len(channel.events) == 1
    event = channel.events[0]
    assert event.attempt_number == 1
    assert event.location == fix_at(10)
    assert session.snapshot().escalation_in_progress
    assert session.status_text == "No response. Your emergency contact has been notified with your location."

    scheduler.advance_to(645)
    assert len(surface.presented) == 3
    assert session.prompter.ticks_skipped == 1
    assert len(channel.events) == 1


def test_heart_rate_spike_then_safe_response(session, scheduler, surface, channel):
    session.start()
    scheduler.advance(10)
    session.observe_vitals(_sample(scheduler, 135))

    request = surface.presented[-1]
    assert request.reason is CheckInReason.VITALS_SPIKE
    assert request.bpm == 135
    assert request.prompt_text == "Heart rate spike detected (135 bpm)."

    scheduler.advance(20)
    assert session.respond_safe()
    assert session.check_in_state is CheckInState.RESPONDED_SAFE
    assert session.status_text == "You're safe. We'll keep monitoring."
    assert surface.dismissed == 1

    scheduler.advance(120)
    assert channel.events == []


def test_second_trigger_is_dropped_while_check_in_outstanding(session, scheduler, surface):
    session.start()
    session.observe_vitals(_sample(scheduler, 140))
    session.observe_vitals(_sample(scheduler, 150))
    assert len(surface.presented) == 1


def test_not_detected_sample_raises_check_in(session, scheduler, surface):
    session.start()
    session.observe_vitals(_sample(scheduler, 0))
    assert surface.presented[-1].reason is CheckInReason.VITALS_NOT_DETECTED


def test_stationary_user_gets_check_in(session, surface):
    session.start()
    for t in range(0, 130, 5):
        session.observe_fix(fix_at(t))
    request = surface.presented[-1]
    assert request.reason is CheckInReason.STATIONARY_TOO_LONG
    assert request.source_location == fix_at(125)


def test_wearable_arrival_cancels_periodic_prompts(session, scheduler):
    session.start()
    scheduler.advance_to(45)
    assert session.prompter.armed

    session.observe_vitals(_sample(scheduler, 80))
    assert not session.prompter.armed
    assert session.status_text == "Monitoring your route and heart rate..."


def test_signal_lost_after_grace_arms_periodic_prompts(session, scheduler):
    session.start()
    session.observe_vitals(_sample(scheduler, 80))

    scheduler.advance_to(45)
    assert not session.prompter.armed

    scheduler.advance_to(60)
    assert session.prompter.armed
    assert session.snapshot().periodic_prompts_active

    session.observe_vitals(_sample(scheduler, 82))
    assert not session.prompter.armed


def test_failed_authentications_are_counted_not_escalated(session, scheduler, surface, channel):
    session.start()
    session.observe_vitals(_sample(scheduler, 135))

    session.record_authentication(AuthenticationOutcome(succeeded=False, failure_kind=AuthFailureKind.FAILED))
    session.record_authentication(AuthenticationOutcome(succeeded=False, failure_kind=AuthFailureKind.USER_CANCELLED))
    session.authentication_failed(AuthFailureKind.FAILED)

    assert session.consecutive_failed_check_ins == 2
    assert session.status_text.endswith("Failed attempts: 2.")
    assert len(surface.presented) == 4
    assert channel.events == []

    assert session.record_authentication(AuthenticationOutcome(succeeded=True))
    assert session.consecutive_failed_check_ins == 0


def test_end_is_idempotent_and_silences_every_alarm(session, scheduler, surface, channel):
    session.start()
    session.observe_vitals(_sample(scheduler, 135))

    assert session.end()
    assert not session.end()
    assert session.phase is WalkPhase.ENDED
    assert session.status_text == "Walk ended."
    assert surface.dismissed >= 1

    presented = len(surface.presented)
    scheduler.advance(3600)
    assert channel.events == []
    assert len(surface.presented) == presented
    assert scheduler.pending == []


def test_inputs_after_end_are_ignored(session, scheduler):
    session.start()
    session.end()
    assert session.observe_vitals(_sample(scheduler, 150)) == []
    assert session.observe_fix(fix_at(0)) is False
    assert not session.respond_safe()
    assert not session.authentication_failed(AuthFailureKind.FAILED)


def test_restart_discards_previous_walk(session, scheduler, channel):
    session.start()
    session.observe_vitals(_sample(scheduler, 135))
    session.start()
    assert session.check_in_state is CheckInState.IDLE
    scheduler.advance(120)
    assert channel.events == []


def test_restart_dismisses_outstanding_prompt(session, scheduler, surface):
    session.start()
    session.observe_vitals(_sample(scheduler, 140))
    assert session.check_in_state is CheckInState.AWAITING_RESPONSE

    session.start()
    assert surface.dismissed == 1
    assert session.snapshot().live_request is None
    assert not session.respond_safe()


def test_periodic_prompt_restarts_from_last_safe_response(session, scheduler, surface):
    session.start()
    scheduler.advance_to(345)
    assert [r.issued_at for r in surface.presented] == [345]

    scheduler.advance_to(400)
    assert session.respond_safe()

    scheduler.advance_to(699)
    assert len(surface.presented) == 1

    scheduler.advance_to(700)
    assert len(surface.presented) == 2
    assert surface.presented[-1].reason is CheckInReason.PERIODIC_PROMPT
    assert surface.presented[-1].issued_at == 700


def test_location_permission_withheld(session, surface):
    session.start(location_granted=False)
    assert session.status_text == "Location unavailable. Monitoring heart rate only."
    for t in range(0, 200, 5):
        assert session.observe_fix(fix_at(t)) is False
    assert surface.presented == []
    assert session.location.get() == fix_at(195)


def test_notification_permission_withheld(session):
    session.start(notifications_granted=False)
    assert session.status_text == "Enable notifications for check-in alerts."
    assert [issue.permission for issue in session.permission_issues] == ["notifications"]


def test_settings_update_reaches_running_walk(session, scheduler, surface, wearable, contact):
    session.start()
    session.update_settings(WalkSettings(heart_rate_threshold=100, check_in_interval_minutes=2, emergency_contact=contact))

    assert wearable.thresholds == [120, 100]
    assert session.prompter.interval_minutes == 2

    session.observe_vitals(_sample(scheduler, 110))
    assert surface.presented[-1].reason is CheckInReason.VITALS_SPIKE


def test_status_text_precedence():
    assert status_text(phase=WalkPhase.IDLE, check_in_state=CheckInState.IDLE) == "Ready to start your safe walk."
    assert status_text(
        phase=WalkPhase.MONITORING,
        check_in_state=CheckInState.ESCALATED,
        notifications_denied=True,
    ).startswith("No response.")
    assert status_text(
        phase=WalkPhase.MONITORING,
        check_in_state=CheckInState.IDLE,
        periodic_interval_minutes=2.5,
        signal_lost=True,
    ) == "Watch not detected. Checking in every 2.5 minutes."
    assert status_text(
        phase=WalkPhase.MONITORING,
        check_in_state=CheckInState.IDLE,
        signal_lost=True,
    ) == "Heart rate signal lost. Keep your watch nearby."
