from __future__ import annotations

import math
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from schemas.walk import PositionFix

EARTH_RADIUS_M: float = 6371000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return great-circle distance in meters between two WGS84 points.

    Plenty accurate for the tens-to-hundreds of meters the detectors compare.
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_between(a: PositionFix, b: PositionFix) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


class LastKnownLocation:
    """Single mutable cell for the latest fix, written by the location feed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fix: Optional[PositionFix] = None

    def set(self, fix: PositionFix) -> None:
        with self._lock:
            self._fix = fix

    def get(self) -> Optional[PositionFix]:
        with self._lock:
            return self._fix

    def clear(self) -> None:
        with self._lock:
            self._fix = None
