"""
User settings: heart-rate threshold, check-in interval, safe zone, contact.

Held in memory for the life of the process; persisting them is the phone's job.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter

from schemas.walk import WalkSettings

logger = logging.getLogger("guardian.settings")

router = APIRouter(prefix="/settings", tags=["settings"])

_settings = WalkSettings()
_listeners: list[Callable[[WalkSettings], None]] = []


def current_settings() -> WalkSettings:
    return _settings


def on_change(listener: Callable[[WalkSettings], None]) -> None:
    _listeners.append(listener)


def replace_settings(settings: WalkSettings) -> WalkSettings:
    global _settings
    _settings = settings
    logger.info(
        "settings updated: threshold %g bpm, interval %g min, safe zone %s, contact %s",
        settings.heart_rate_threshold,
        settings.check_in_interval_minutes,
        "set" if settings.safe_zone else "none",
        settings.emergency_contact.name if settings.emergency_contact else "none",
    )
    for listener in _listeners:
        listener(settings)
    return settings


@router.get("", response_model=WalkSettings)
async def get_settings() -> WalkSettings:
    return _settings


@router.put("", response_model=WalkSettings)
async def put_settings(settings: WalkSettings) -> WalkSettings:
    """Replace all settings. Threshold and interval reach a running walk immediately."""
    return replace_settings(settings)
