"""
Client for the remote emergency location log.

The log server appends one `timestamp,latitude,longitude` row per call:

    GET <LOCATION_LOG_URL>?user=<user>&token=<token>&location=<lat>,<lon>

The token is also sent as a bearer token. One attempt per escalation; a
failure is reported as DeliveryFailure and never retried.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional

import requests

from core.errors import DeliveryFailure

logger = logging.getLogger("guardian.location_log")

LOCATION_LOG_URL: str = os.getenv("LOCATION_LOG_URL", "")
LOCATION_LOG_TOKEN: str = os.getenv("LOCATION_LOG_TOKEN", "")
LOCATION_LOG_USER: str = os.getenv("LOCATION_LOG_USER", "walker")
LOCATION_LOG_TIMEOUT: float = float(os.getenv("LOCATION_LOG_TIMEOUT", "5"))


class LocationLogClient:
    name = "location-log"

    def __init__(
        self,
        base_url: str,
        token: str,
        user: str = LOCATION_LOG_USER,
        timeout: float = LOCATION_LOG_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url
        self.token = token
        self.user = user
        self.timeout = timeout
        self._http = session or requests.Session()

    @classmethod
    def from_env(cls) -> Optional["LocationLogClient"]:
        """Build a client from LOCATION_LOG_* env vars; None if not configured."""
        if not LOCATION_LOG_URL or not LOCATION_LOG_TOKEN:
            return None
        return cls(LOCATION_LOG_URL, LOCATION_LOG_TOKEN)

    def record(self, user: str, lat: float, lon: float, timestamp: float) -> dict:
        params = {
            "user": user,
            "token": self.token,
            "location": f"{lat},{lon}",
            "timestamp": datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(),
        }
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            r = self._http.get(self.base_url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise DeliveryFailure(self.name, f"request failed: {exc}") from exc

        if not r.ok:
            raise DeliveryFailure(self.name, f"HTTP {r.status_code}")

        logger.info("logged location %.5f,%.5f for %s", lat, lon, user)
        try:
            return r.json()
        except ValueError:
            # The reference server answers with an HTML page.
            return {"status": r.status_code}
