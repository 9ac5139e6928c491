from __future__ import annotations

import logging
from typing import Callable, Optional

from core.geo import distance_between
from schemas.walk import PositionFix, SafeZone

logger = logging.getLogger("guardian.stationary")

# Displacement between consecutive fixes at or below this counts as "not moving".
STOPPED_DISTANCE_M: float = 25.0
# Continuous stationary time outside the safe zone before a check-in is due.
STATIONARY_TRIGGER_SECONDS: float = 120.0


class StationaryDetector:
    """
    Watches the fix stream for a user who stopped outside the safe zone.
    Fires `on_stationary(fix)` once per continuous stationary episode; the
    episode has to be re-established from scratch before it can fire again.
    """

    def __init__(
        self,
        safe_zone: Optional[SafeZone] = None,
        stopped_distance_m: float = STOPPED_DISTANCE_M,
        trigger_seconds: float = STATIONARY_TRIGGER_SECONDS,
    ) -> None:
        self.safe_zone = safe_zone
        self.stopped_distance_m = stopped_distance_m
        self.trigger_seconds = trigger_seconds
        self.on_stationary: Optional[Callable[[PositionFix], None]] = None

        self.stationary_since: Optional[float] = None
        self.in_safe_zone: bool = False
        self._previous: Optional[PositionFix] = None

    def observe(self, fix: PositionFix) -> bool:
        """Feed one fix. Returns True when this fix raised the stationary event."""
        previous = self._previous
        self._previous = fix

        self.in_safe_zone = self.safe_zone is not None and self.safe_zone.contains(fix)
        if self.in_safe_zone:
            self.stationary_since = None
            return False

        if previous is None or distance_between(previous, fix) > self.stopped_distance_m:
            self.stationary_since = None
            return False

        now = fix.timestamp
        if self.stationary_since is None:
            self.stationary_since = now
            return False

        if now - self.stationary_since < self.trigger_seconds:
            return False

        logger.info(
            "stationary for %.0fs at %.5f,%.5f",
            now - self.stationary_since, fix.latitude, fix.longitude,
        )
        self.stationary_since = None
        if self.on_stationary:
            self.on_stationary(fix)
        return True

    def reset(self) -> None:
        self.stationary_since = None
        self.in_safe_zone = False
        self._previous = None
