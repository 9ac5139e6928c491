from __future__ import annotations

import logging
from concurrent.futures import Executor
from typing import Callable, Optional, Sequence

from core.alarms import Scheduler
from core.contact_channel import ContactChannel, emergency_message_body
from core.errors import DeliveryFailure
from core.geo import LastKnownLocation
from core.location_log import LocationLogClient
from schemas.walk import EmergencyContact, EscalationEvent, PositionFix

logger = logging.getLogger("guardian.escalation")


class EscalationCoordinator:
    """
    Composes the escalation payload and hands it off, fire-and-forget.

    `on_escalation` runs synchronously so the UI shows "escalation in
    progress" before any external channel is tried. Channel work runs on
    `executor` when one is given (blocking HTTP/SMTP stays off the session
    lock), inline otherwise.
    """

    def __init__(
        self,
        contact: EmergencyContact,
        scheduler: Scheduler,
        last_known: LastKnownLocation,
        channels: Sequence[ContactChannel] = (),
        location_log: Optional[LocationLogClient] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.contact = contact
        self._scheduler = scheduler
        self._last_known = last_known
        self.channels = list(channels)
        self.location_log = location_log
        self._executor = executor
        self.on_escalation: Optional[Callable[[EscalationEvent], None]] = None

        self.attempts = 0
        self.events: list[EscalationEvent] = []
        self.delivery_failures: list[DeliveryFailure] = []

    @property
    def in_progress(self) -> bool:
        return self.attempts > 0

    def handle_escalation(self, location: Optional[PositionFix] = None) -> EscalationEvent:
        location = location or self._last_known.get()
        self.attempts += 1
        event = EscalationEvent(
            contact=self.contact,
            location=location,
            attempt_number=self.attempts,
            timestamp=self._scheduler.now(),
            message=emergency_message_body(location),
        )
        self.events.append(event)
        logger.warning("escalating to %s (attempt %d), location %s",
                       self.contact.name, event.attempt_number,
                       f"{location.latitude:.5f},{location.longitude:.5f}" if location else "unknown")

        if self.on_escalation:
            self.on_escalation(event)

        if self._executor is not None:
            self._executor.submit(self._deliver, event)
        else:
            self._deliver(event)
        return event

    def _deliver(self, event: EscalationEvent) -> None:
        if self.location_log is not None and event.location is not None:
            self._attempt(
                self.location_log.name,
                lambda: self.location_log.record(
                    self.location_log.user,
                    event.location.latitude,
                    event.location.longitude,
                    event.timestamp,
                ),
            )
        for channel in self.channels:
            self._attempt(channel.name, lambda ch=channel: ch.deliver(event))

    def _attempt(self, name: str, send: Callable[[], object]) -> None:
        try:
            send()
        except DeliveryFailure as exc:
            self.delivery_failures.append(exc)
            logger.error("escalation delivery failed, not retrying: %s", exc)
        except Exception as exc:
            failure = DeliveryFailure(name, repr(exc))
            self.delivery_failures.append(failure)
            logger.exception("escalation channel %s crashed", name)
