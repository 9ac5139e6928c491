"""
Check-in lifecycle.

    IDLE ──issue──> AWAITING_RESPONSE ──respond_safe / auth ok──> RESPONDED_SAFE
                           │                                          │
                           └──timeout──> ESCALATED (sticky)           └──issue──> ...

The response timeout armed at issue time is the only path to ESCALATED;
failed authentications are counted and re-prompted but never escalate.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from core.alarms import Alarm, Scheduler
from schemas.walk import AuthFailureKind, CheckInRequest, CheckInState

logger = logging.getLogger("guardian.checkin")

RESPONSE_TIMEOUT_SECONDS: float = 60.0

# Failure kinds where the user declined the method rather than failing it.
UNCOUNTED_FAILURES = frozenset({
    AuthFailureKind.USER_CANCELLED,
    AuthFailureKind.USER_REQUESTED_FALLBACK,
})

ISSUABLE_STATES = frozenset({CheckInState.IDLE, CheckInState.RESPONDED_SAFE})


class CheckInCycle:
    def __init__(self, scheduler: Scheduler, timeout_seconds: float = RESPONSE_TIMEOUT_SECONDS) -> None:
        self._scheduler = scheduler
        self.timeout_seconds = timeout_seconds

        self.state = CheckInState.IDLE
        self.request: Optional[CheckInRequest] = None
        self.consecutive_failures = 0
        self._timeout: Optional[Alarm] = None

        # Hooks wired by the owning WalkSession.
        self.on_present: Optional[Callable[[CheckInRequest], None]] = None
        self.on_dismiss: Optional[Callable[[], None]] = None
        self.on_safe: Optional[Callable[[CheckInRequest], None]] = None
        self.on_escalate: Optional[Callable[[CheckInRequest], None]] = None

    @property
    def can_issue(self) -> bool:
        return self.state in ISSUABLE_STATES

    @property
    def awaiting(self) -> bool:
        return self.state is CheckInState.AWAITING_RESPONSE

    @property
    def timeout_pending(self) -> bool:
        return self._timeout is not None and self._timeout.pending

    def issue(self, request: CheckInRequest) -> bool:
        if not self.can_issue:
            logger.info("dropping %s check-in: cycle is %s", request.reason.value, self.state.value)
            return False

        self._cancel_timeout()
        self.state = CheckInState.AWAITING_RESPONSE
        self.request = request
        self._timeout = self._scheduler.call_later(
            self.timeout_seconds,
            lambda: self._timeout_for(request),
            name="check-in-timeout",
        )
        logger.info("check-in issued (%s), escalating in %.0fs without a response",
                    request.reason.value, self.timeout_seconds)
        if self.on_present:
            self.on_present(request)
        return True

    def respond_safe(self) -> bool:
        if not self.awaiting:
            logger.debug("safe response ignored: cycle is %s", self.state.value)
            return False

        self._cancel_timeout()
        self.state = CheckInState.RESPONDED_SAFE
        self.consecutive_failures = 0
        request = self.request
        logger.info("user confirmed safe")
        if self.on_dismiss:
            self.on_dismiss()
        if self.on_safe and request is not None:
            self.on_safe(request)
        return True

    def authentication_succeeded(self) -> bool:
        return self.respond_safe()

    def authentication_failed(self, kind: AuthFailureKind) -> bool:
        if not self.awaiting:
            logger.debug("authentication failure ignored: cycle is %s", self.state.value)
            return False

        if kind in UNCOUNTED_FAILURES:
            logger.info("authentication not completed (%s); not counted", kind.value)
        else:
            self.consecutive_failures += 1
            logger.warning("authentication failed (%s), failures: %d",
                           kind.value, self.consecutive_failures)

        if self.on_present and self.request is not None:
            self.on_present(self.request)
        return True

    def timeout_fires(self) -> bool:
        if self.request is None:
            return False
        return self._timeout_for(self.request)

    def cancel(self) -> None:
        """Drop the outstanding alarm; used when the walk ends."""
        self._cancel_timeout()

    def _timeout_for(self, request: CheckInRequest) -> bool:
        # A response may have won the race after this alarm was dispatched.
        if not self.awaiting or self.request is not request:
            return False

        self._timeout = None
        self.state = CheckInState.ESCALATED
        logger.warning("no response to %s check-in after %.0fs, escalating",
                       request.reason.value, self.timeout_seconds)
        if self.on_dismiss:
            self.on_dismiss()
        if self.on_escalate:
            self.on_escalate(request)
        return True

    def _cancel_timeout(self) -> None:
        if self._timeout is not None:
            self._timeout.cancel()
            self._timeout = None
