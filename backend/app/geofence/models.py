"""
models.py — Geofence data structures.

═══════════════════════════════════════════════════════════════════════════
ZONE CATEGORIES
═══════════════════════════════════════════════════════════════════════════

    Category      Meaning                             Alerts by default
    ──────────    ──────────────────────────────      ─────────────────
    safe          tourist police post, hotel area     no
    caution       crowded market, construction        yes
    high_risk     high-crime area                     yes (+ admin feed)
    restricted    closed / off-limits area            yes (+ admin feed)

Zones are static for a tracking session; the matcher assumes they do not
overlap for alerting purposes and resolves accidental overlaps
deterministically (see matcher.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from backend.app.spatial.geodesy import Coordinate, format_distance


class ZoneCategory(str, Enum):
    """Risk category of a zone."""
    SAFE       = "safe"
    CAUTION    = "caution"
    HIGH_RISK  = "high_risk"
    RESTRICTED = "restricted"


# Categories whose transitions are also pushed to admin views in real time
ADMIN_VISIBLE_CATEGORIES = frozenset({ZoneCategory.HIGH_RISK, ZoneCategory.RESTRICTED})


class Transition(str, Enum):
    """Change in zone membership between two samples."""
    ENTER = "enter"
    EXIT  = "exit"
    NONE  = "none"


@dataclass(frozen=True)
class Zone:
    """
    A named circular region.

    Attributes
    ----------
    zone_id : str
        Stable identifier; also the final overlap tie-breaker.
    name : str
        Display name used in alert messages.
    latitude, longitude : float
        Center in decimal degrees.
    radius_m : float
        Radius in meters (> 0).
    category : ZoneCategory
    description : str
    """
    zone_id: str
    name: str
    latitude: float
    longitude: float
    radius_m: float
    category: ZoneCategory = ZoneCategory.CAUTION
    description: str = ""

    def __post_init__(self) -> None:
        if not self.zone_id:
            raise ValueError("Zone id must not be empty")
        Coordinate(self.latitude, self.longitude)
        if self.radius_m <= 0:
            raise ValueError(
                f"Zone {self.zone_id}: radius must be positive, got {self.radius_m}"
            )
        # Accept plain strings from JSON config
        if not isinstance(self.category, ZoneCategory):
            object.__setattr__(self, "category", ZoneCategory(self.category))

    @property
    def center(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "name": self.name,
            "center": {"latitude": self.latitude, "longitude": self.longitude},
            "radius_m": self.radius_m,
            "category": self.category.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class ZoneEvaluation:
    """
    Result of matching one sample.

    ``zone`` is the entered zone for ENTER, the zone that was left for
    EXIT, and the current zone (or None) for NONE.
    """
    current_zone_id: Optional[str]
    transition: Transition
    zone: Optional[Zone]
    distance_m: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_zone_id": self.current_zone_id,
            "transition": self.transition.value,
            "zone": self.zone.to_dict() if self.zone else None,
            "distance_m": (
                round(self.distance_m, 1) if self.distance_m is not None else None
            ),
            "distance_display": (
                format_distance(self.distance_m) if self.distance_m is not None else None
            ),
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ZoneMembership:
    """Current zone of one tracked subject (at most one)."""
    subject_id: str
    current_zone_id: Optional[str] = None
    entered_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=_now)
    samples_evaluated: int = 0

    def apply(self, evaluation: ZoneEvaluation) -> None:
        """Fold an evaluation into the membership state."""
        if evaluation.current_zone_id != self.current_zone_id:
            self.entered_at = _now() if evaluation.current_zone_id else None
        self.current_zone_id = evaluation.current_zone_id
        self.updated_at = _now()
        self.samples_evaluated += 1

    def clear(self) -> None:
        self.current_zone_id = None
        self.entered_at = None
        self.updated_at = _now()
        self.samples_evaluated = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "current_zone_id": self.current_zone_id,
            "entered_at": self.entered_at.isoformat() if self.entered_at else None,
            "updated_at": self.updated_at.isoformat(),
            "samples_evaluated": self.samples_evaluated,
        }
