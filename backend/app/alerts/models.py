"""
models.py — Shared data structures for the alert relay.

Defines:
    • AlertCategory  — what kind of alert (user-triggered or zone transition)
    • Severity       — low → critical, ordered
    • DeliveryStatus — relay state machine per record
    • AlertRecord    — the unit of delivery
    • BusMessage     — envelope published on the local bus
    • RelayResult / ReplayReport — outcomes reported to callers

═══════════════════════════════════════════════════════════════════════════
DELIVERY STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    PENDING ──► DELIVERED                 backend write succeeds
    PENDING ──► QUEUED_OFFLINE            write fails OR device offline
    QUEUED_OFFLINE ──► DELIVERED          replay succeeds after reconnect
    PENDING ──► FAILED                    write failed AND offline store
                                          could not keep the record

═══════════════════════════════════════════════════════════════════════════
ZONE TRANSITION SEVERITY
═══════════════════════════════════════════════════════════════════════════

    Zone category    enter       exit
    ─────────────    ────────    ──────
    high_risk        critical    high
    restricted       critical    medium
    caution          medium      low
    safe             low         low
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from backend.app.core.errors import ValidationError
from backend.app.geofence.models import Transition, Zone, ZoneCategory
from backend.app.spatial.geodesy import Coordinate


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertCategory(str, Enum):
    """Alert kinds."""
    EMERGENCY  = "emergency"
    MEDICAL    = "medical"
    SECURITY   = "security"
    ASSISTANCE = "assistance"
    PANIC      = "panic"
    ZONE_ENTRY = "zone_entry"
    ZONE_EXIT  = "zone_exit"


class Severity(str, Enum):
    """Alert severity — ``rank`` gives the ordering."""
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class DeliveryStatus(str, Enum):
    """Relay state per record."""
    PENDING        = "pending"
    DELIVERED      = "delivered"
    QUEUED_OFFLINE = "queued_offline"
    FAILED         = "failed"


class BusMessageType(str, Enum):
    OFFLINE_ALERT  = "OFFLINE_ALERT"
    GEOFENCE_ALERT = "GEOFENCE_ALERT"


# ═══════════════════════════════════════════════════════════════════════════
# Severity mappings
# ═══════════════════════════════════════════════════════════════════════════

TRANSITION_SEVERITY: Dict[ZoneCategory, Dict[Transition, Severity]] = {
    ZoneCategory.HIGH_RISK: {
        Transition.ENTER: Severity.CRITICAL,
        Transition.EXIT: Severity.HIGH,
    },
    ZoneCategory.RESTRICTED: {
        Transition.ENTER: Severity.CRITICAL,
        Transition.EXIT: Severity.MEDIUM,
    },
    ZoneCategory.CAUTION: {
        Transition.ENTER: Severity.MEDIUM,
        Transition.EXIT: Severity.LOW,
    },
    ZoneCategory.SAFE: {
        Transition.ENTER: Severity.LOW,
        Transition.EXIT: Severity.LOW,
    },
}

# Used when the user does not pick a severity explicitly
DEFAULT_SEVERITY: Dict[AlertCategory, Severity] = {
    AlertCategory.PANIC: Severity.CRITICAL,
    AlertCategory.EMERGENCY: Severity.CRITICAL,
    AlertCategory.MEDICAL: Severity.HIGH,
    AlertCategory.SECURITY: Severity.HIGH,
    AlertCategory.ASSISTANCE: Severity.MEDIUM,
    AlertCategory.ZONE_ENTRY: Severity.MEDIUM,
    AlertCategory.ZONE_EXIT: Severity.LOW,
}


def severity_for_transition(category: ZoneCategory, transition: Transition) -> Severity:
    """
    Severity of a zone transition alert.

    Raises
    ------
    ValueError
        For ``Transition.NONE`` (no alert is raised without a transition).
    """
    if transition == Transition.NONE:
        raise ValueError("No severity for a non-transition")
    return TRANSITION_SEVERITY[category][transition]


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class AlertRecord:
    """
    A single alert on its way to the backend.

    ``latitude``/``longitude`` may be None at construction; the relay fills
    them from the last known or placeholder location before delivery.

    Raises
    ------
    ValidationError
        Missing ``subject_id`` or out-of-range coordinates.
    """
    subject_id: str
    category: AlertCategory
    severity: Severity
    message: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    subject_name: Optional[str] = None
    zone_id: Optional[str] = None
    alert_id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)
    status: DeliveryStatus = DeliveryStatus.PENDING
    offline: bool = False
    stored_at: Optional[datetime] = None
    device_info: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.subject_id or not str(self.subject_id).strip():
            raise ValidationError("subject_id is required", field="subject_id")
        self.category = AlertCategory(self.category)
        self.severity = Severity(self.severity)
        self.status = DeliveryStatus(self.status)
        if (self.latitude is None) != (self.longitude is None):
            raise ValidationError(
                "latitude and longitude must be given together", field="location",
            )
        if self.has_location:
            try:
                Coordinate(self.latitude, self.longitude)
            except ValueError as e:
                raise ValidationError(str(e), field="location") from e

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def for_transition(
        cls,
        subject_id: str,
        zone: Zone,
        transition: Transition,
        latitude: float,
        longitude: float,
        subject_name: Optional[str] = None,
    ) -> "AlertRecord":
        """Build the alert for entering or leaving ``zone``."""
        if transition == Transition.ENTER:
            category = AlertCategory.ZONE_ENTRY
            message = f"You have entered {zone.name}. {zone.description}".strip()
        else:
            category = AlertCategory.ZONE_EXIT
            message = f"You have exited {zone.name}."

        return cls(
            subject_id=subject_id,
            subject_name=subject_name,
            category=category,
            severity=severity_for_transition(zone.category, transition),
            message=message,
            latitude=latitude,
            longitude=longitude,
            zone_id=zone.zone_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "location": (
                {"latitude": self.latitude, "longitude": self.longitude}
                if self.has_location else None
            ),
            "zone_id": self.zone_id,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "offline": self.offline,
            "stored_at": self.stored_at.isoformat() if self.stored_at else None,
            "device_info": self.device_info,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRecord":
        """Inverse of ``to_dict`` (offline store persistence)."""
        location = data.get("location") or {}
        return cls(
            alert_id=data["alert_id"],
            subject_id=data["subject_id"],
            subject_name=data.get("subject_name"),
            category=AlertCategory(data["category"]),
            severity=Severity(data["severity"]),
            message=data.get("message", ""),
            latitude=location.get("latitude"),
            longitude=location.get("longitude"),
            zone_id=data.get("zone_id"),
            created_at=_parse_dt(data["created_at"]),
            status=DeliveryStatus(data.get("status", DeliveryStatus.PENDING.value)),
            offline=bool(data.get("offline", False)),
            stored_at=_parse_dt(data.get("stored_at")),
            device_info=dict(data.get("device_info") or {}),
        )

    def to_backend_row(self, synced_at: Optional[datetime] = None) -> Dict[str, Any]:
        """Row shape written to the hosted ``emergency_alerts`` table."""
        return {
            "id": self.alert_id,
            "user_id": self.subject_id,
            "user_name": self.subject_name,
            "type": self.category.value,
            "message": self.message,
            "severity": self.severity.value,
            "location_lat": self.latitude,
            "location_lng": self.longitude,
            "status": "active",
            "zone_id": self.zone_id,
            "created_at": self.created_at.isoformat(),
            "device_info": self.device_info or None,
            "offline_stored_at": self.stored_at.isoformat() if self.stored_at else None,
            "synced_at": synced_at.isoformat() if synced_at else None,
        }


@dataclass(frozen=True)
class BusMessage:
    """Envelope published on the local bus."""
    type: BusMessageType
    record: AlertRecord

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "record": self.record.to_dict()}


USER_MESSAGE_SENT = "alert sent"
USER_MESSAGE_QUEUED = "alert sent — will retry when back online"
# Neither delivered nor queued, so nothing will retry it
USER_MESSAGE_FAILED = "alert could not be sent or saved — call local emergency services"


@dataclass
class RelayResult:
    """Outcome of ``AlertRelay.send``."""
    record: AlertRecord
    error_message: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.record.status == DeliveryStatus.DELIVERED

    @property
    def user_message(self) -> str:
        if self.delivered:
            return USER_MESSAGE_SENT
        if self.record.status == DeliveryStatus.FAILED:
            return USER_MESSAGE_FAILED
        return USER_MESSAGE_QUEUED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.record.alert_id,
            "status": self.record.status.value,
            "delivered": self.delivered,
            "message": self.user_message,
            "record": self.record.to_dict(),
        }


@dataclass
class ReplayReport:
    """Outcome of ``AlertRelay.replay_queued``."""
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    remaining: int = 0
    skipped_offline: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "remaining": self.remaining,
            "skipped_offline": self.skipped_offline,
        }
