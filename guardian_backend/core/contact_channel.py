"""
Emergency contact channels.

The coordinator hands every channel the same composed EscalationEvent. A
channel either gets the message on its way or raises DeliveryFailure;
whether the contact actually reads it is outside our control.

Set SMTP values through the environment (e.g. Gmail: smtp.gmail.com,
port 587, app password).
"""

from __future__ import annotations

import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Optional, Protocol
from urllib.parse import quote

from core.errors import DeliveryFailure
from schemas.walk import EscalationEvent, PositionFix

logger = logging.getLogger("guardian.contact")

SMTP_HOST: str = os.getenv("SMTP_HOST", "")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER: str = os.getenv("SMTP_USER", "")
SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM: str = os.getenv("SMTP_FROM", "safewalk@localhost")

SUBJECT = "SafeWalk emergency alert"
MAPS_URL = "https://maps.apple.com/?q={lat},{lon}"


class ContactChannel(Protocol):
    name: str

    def deliver(self, event: EscalationEvent) -> None: ...


def maps_link(fix: PositionFix) -> str:
    return MAPS_URL.format(lat=fix.latitude, lon=fix.longitude)


def emergency_message_body(location: Optional[PositionFix]) -> str:
    if location is None:
        return "SafeWalk: I may need help. Please check on me."
    return (
        f"SafeWalk: I may need help. My location: {location.latitude}, {location.longitude}"
        f" - {maps_link(location)}"
    )


def sms_url(phone_number: str, body: str) -> str:
    digits = "".join(ch for ch in phone_number if ch.isdigit())
    if not digits:
        raise DeliveryFailure("sms", f"no dialable digits in {phone_number!r}")
    return f"sms:{digits}?body={quote(body, safe='')}"


class SmsLinkChannel:
    """
    Pre-fills an SMS to the contact and asks the phone to open it.
    The user still has to press send; that is not tracked here.
    """

    name = "sms"

    def __init__(self, open_url: Callable[[str], None]) -> None:
        self._open_url = open_url

    def deliver(self, event: EscalationEvent) -> None:
        url = sms_url(event.contact.phone_number, event.message)
        logger.info("opening emergency SMS to %s", event.contact.name)
        self._open_url(url)


class EmailChannel:
    name = "email"

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        user: str = SMTP_USER,
        password: str = SMTP_PASSWORD,
        from_email: str = SMTP_FROM,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user)

    def deliver(self, event: EscalationEvent) -> None:
        to_email = event.contact.email
        if not to_email:
            raise DeliveryFailure(self.name, f"no e-mail address for {event.contact.name}")
        if not self.configured:
            raise DeliveryFailure(self.name, "SMTP not configured (SMTP_HOST, SMTP_USER)")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"{SUBJECT} (attempt {event.attempt_number})"
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.attach(MIMEText(event.message, "plain"))

        try:
            with smtplib.SMTP(self.host, self.port) as server:
                server.starttls()
                if self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryFailure(self.name, f"failed to send e-mail: {exc}") from exc
        logger.info("emergency e-mail sent to %s", to_email)
