from __future__ import annotations


class GuardianError(Exception):
    """Base class for walk-guardian errors."""


class ConfigurationError(GuardianError):
    """The walk cannot start with the current settings (e.g. "missing-contact")."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PermissionDenied(GuardianError):
    """A device permission was withheld; the matching feature degrades."""

    def __init__(self, permission: str) -> None:
        super().__init__(f"{permission} permission withheld")
        self.permission = permission


class DeliveryFailure(GuardianError):
    """An external escalation channel (location log, SMS, e-mail) failed."""

    def __init__(self, channel: str, detail: str) -> None:
        super().__init__(f"{channel}: {detail}")
        self.channel = channel
        self.detail = detail
