"""
Pydantic schemas for the tracking and alert API.

Kept apart from the route handlers so tests and other entry points can
build requests without importing the routers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.alerts.models import AlertCategory, Severity
from backend.app.tracking.models import PositionSample, TrackingOptions


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class UserAlertCategory(str, Enum):
    """Alert kinds a user can raise directly (zone alerts are automatic)."""
    EMERGENCY  = "emergency"
    MEDICAL    = "medical"
    SECURITY   = "security"
    ASSISTANCE = "assistance"
    PANIC      = "panic"

    def to_category(self) -> AlertCategory:
        return AlertCategory(self.value)


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------

class TrackingOptionsInput(BaseModel):
    """Body for POST /api/v1/tracking/{subject_id}/start (all optional)."""
    subject_name: Optional[str] = Field(None, examples=["Priya"])
    high_accuracy: Optional[bool] = Field(None, examples=[True])
    timeout_ms: Optional[int] = Field(None, ge=0, examples=[15000])
    max_sample_age_ms: Optional[int] = Field(None, ge=0, examples=[30000])

    def to_options(self, defaults: TrackingOptions) -> TrackingOptions:
        return TrackingOptions(
            high_accuracy=(
                defaults.high_accuracy if self.high_accuracy is None else self.high_accuracy
            ),
            timeout_ms=defaults.timeout_ms if self.timeout_ms is None else self.timeout_ms,
            max_sample_age_ms=(
                defaults.max_sample_age_ms
                if self.max_sample_age_ms is None else self.max_sample_age_ms
            ),
        )


class PositionInput(BaseModel):
    """One device fix."""
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[11.030])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[76.992])
    accuracy: float = Field(0.0, ge=0.0, description="Meters", examples=[12.0])
    altitude: Optional[float] = Field(None, examples=[411.0])
    speed: Optional[float] = Field(None, ge=0.0, description="m/s", examples=[1.4])
    heading: Optional[float] = Field(None, ge=0.0, lt=360.0, examples=[90.0])
    timestamp: Optional[datetime] = Field(
        None, description="Capture time; server time when omitted",
    )
    battery_level: Optional[float] = Field(None, ge=0.0, le=100.0, examples=[82.0])

    def to_sample(self) -> PositionSample:
        kwargs: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "altitude": self.altitude,
            "speed": self.speed,
            "heading": self.heading,
            "battery_level": self.battery_level,
        }
        if self.timestamp is not None:
            ts = self.timestamp
            # Naive device clocks are taken as UTC
            kwargs["timestamp"] = ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
        return PositionSample(**kwargs)


class LocationErrorInput(BaseModel):
    """Location failure reported by the device (W3C geolocation codes)."""
    code: int = Field(
        ..., examples=[1],
        description="1 = permission denied, 2 = position unavailable, 3 = timeout",
    )
    message: Optional[str] = Field(None, examples=["User denied Geolocation"])


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class EmergencyAlertRequest(BaseModel):
    """Explicit user-raised alert (panic button, medical, ...)."""
    subject_id: str = Field(..., min_length=1, examples=["T-001"])
    subject_name: Optional[str] = Field(None, examples=["Priya"])
    category: UserAlertCategory = Field(UserAlertCategory.EMERGENCY)
    severity: Optional[Severity] = Field(
        None, description="Defaults by category when omitted",
    )
    message: str = Field("", max_length=2000, examples=["Lost near the market"])
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)
    device_info: Dict[str, Any] = Field(
        default_factory=dict, examples=[{"platform": "android", "battery": 41}],
    )


class PanicArmRequest(BaseModel):
    """Body for POST /api/v1/alerts/panic/{subject_id}."""
    subject_name: Optional[str] = None
    message: str = Field("", max_length=2000)
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)
    device_info: Dict[str, Any] = Field(default_factory=dict)


class NetworkStatusRequest(BaseModel):
    """Online/offline report from a device or operator."""
    online: bool = Field(..., examples=[True])


class RelayResponse(BaseModel):
    """Outcome of sending one alert."""
    alert_id: str
    status: str
    delivered: bool
    message: str
    record: Dict[str, Any]


class ReplayResponse(BaseModel):
    attempted: int
    delivered: int
    failed: int
    remaining: int
    skipped_offline: bool


class OfflineQueueResponse(BaseModel):
    count: int
    max: int
    records: List[Dict[str, Any]]
