from __future__ import annotations

import enum
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from core.geo import haversine_m

DEFAULT_SAFE_ZONE_RADIUS_M: float = 100.0


class PositionFix(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: float                          # epoch seconds
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class SafeZone(BaseModel):
    """Circular geofence around the walk destination."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_meters: float = Field(default=DEFAULT_SAFE_ZONE_RADIUS_M, gt=0)

    def contains(self, fix: PositionFix) -> bool:
        distance = haversine_m(self.latitude, self.longitude, fix.latitude, fix.longitude)
        return distance <= self.radius_meters


class EmergencyContact(BaseModel):
    name: str = Field(min_length=1)
    phone_number: str
    email: Optional[EmailStr] = None


class VitalsSample(BaseModel):
    bpm: Optional[float] = None               # None or <= 0 means "not detected"
    timestamp: float                          # epoch seconds

    @property
    def detected(self) -> bool:
        return self.bpm is not None and self.bpm > 0


class CheckInReason(str, enum.Enum):
    STATIONARY_TOO_LONG = "stationary_too_long"
    VITALS_SPIKE = "vitals_spike"
    VITALS_NOT_DETECTED = "vitals_not_detected"
    PERIODIC_PROMPT = "periodic_prompt"


class CheckInRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    reason: CheckInReason
    issued_at: float
    source_location: Optional[PositionFix] = None
    bpm: Optional[float] = None               # set for vitals_spike

    @property
    def prompt_text(self) -> str:
        if self.reason is CheckInReason.STATIONARY_TOO_LONG:
            return "You've been stationary for over 2 minutes outside your destination."
        if self.reason is CheckInReason.VITALS_SPIKE:
            return f"Heart rate spike detected ({int(self.bpm or 0)} bpm)."
        if self.reason is CheckInReason.VITALS_NOT_DETECTED:
            return "Heart rate could not be detected."
        return "Time for your scheduled check-in."


class CheckInState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    RESPONDED_SAFE = "responded_safe"
    ESCALATED = "escalated"


class AuthFailureKind(str, enum.Enum):
    FAILED = "failed"
    USER_CANCELLED = "user_cancelled"
    USER_REQUESTED_FALLBACK = "user_requested_fallback"
    UNAVAILABLE = "unavailable"
    OTHER = "other"


class AuthenticationOutcome(BaseModel):
    succeeded: bool
    failure_kind: Optional[AuthFailureKind] = None
    at: Optional[float] = None                # epoch seconds, as reported by the phone


class EscalationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    contact: EmergencyContact
    location: Optional[PositionFix] = None
    attempt_number: int = Field(ge=1)
    timestamp: float
    message: str


class WalkSettings(BaseModel):
    heart_rate_threshold: float = Field(default=120.0, gt=0)
    check_in_interval_minutes: float = Field(default=5.0, ge=1, le=30)
    safe_zone: Optional[SafeZone] = None
    emergency_contact: Optional[EmergencyContact] = None


class WalkPhase(str, enum.Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    ENDED = "ended"


class WalkStatus(BaseModel):
    active: bool
    phase: WalkPhase
    status_text: str
    check_in_state: CheckInState
    live_request: Optional[CheckInRequest] = None
    consecutive_failed_check_ins: int = 0
    last_known_location: Optional[PositionFix] = None
    current_heart_rate: Optional[float] = None
    in_safe_zone: bool = False
    periodic_prompts_active: bool = False
    escalation_in_progress: bool = False
    escalation_attempts: int = 0


class StartWalkRequest(BaseModel):
    location_granted: bool = True
    notifications_granted: bool = True
