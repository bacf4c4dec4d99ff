"""
models.py — Data structures for the position stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.spatial.geodesy import Coordinate


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TrackingOptions:
    """
    Location subscription settings.

    Attributes
    ----------
    high_accuracy : bool
        Ask the provider for its most accurate fix source.
    timeout_ms : int
        Longest wait for a fix before a timeout error is reported
        (0 disables the timer).
    max_sample_age_ms : int
        A cached fix younger than this may be delivered when a watch starts.
    """
    high_accuracy: bool = True
    timeout_ms: int = 15_000
    max_sample_age_ms: int = 30_000

    def __post_init__(self) -> None:
        if self.timeout_ms < 0:
            raise ValueError(f"timeout_ms must be >= 0, got {self.timeout_ms}")
        if self.max_sample_age_ms < 0:
            raise ValueError(
                f"max_sample_age_ms must be >= 0, got {self.max_sample_age_ms}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "high_accuracy": self.high_accuracy,
            "timeout_ms": self.timeout_ms,
            "max_sample_age_ms": self.max_sample_age_ms,
        }


@dataclass(frozen=True)
class PositionSample:
    """A single device fix."""
    latitude: float
    longitude: float
    accuracy: float = 0.0  # meters
    altitude: Optional[float] = None
    speed: Optional[float] = None  # m/s
    heading: Optional[float] = None  # degrees from north
    timestamp: datetime = field(default_factory=_now)
    battery_level: Optional[float] = None  # percent, 0–100

    def __post_init__(self) -> None:
        # Range-check via Coordinate
        Coordinate(self.latitude, self.longitude)
        if self.accuracy < 0:
            raise ValueError(f"Accuracy must be >= 0, got {self.accuracy}")
        if self.battery_level is not None and not (0.0 <= self.battery_level <= 100.0):
            raise ValueError(
                f"Battery level must be in [0, 100], got {self.battery_level}"
            )

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    @property
    def movement(self) -> str:
        """Coarse movement pattern derived from speed."""
        if self.speed is None:
            return "unknown"
        return "moving" if self.speed > 1.0 else "stationary"

    def age_ms(self, now: Optional[datetime] = None) -> float:
        reference = now or _now()
        return (reference - self.timestamp).total_seconds() * 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "altitude": self.altitude,
            "speed": self.speed,
            "heading": self.heading,
            "timestamp": self.timestamp.isoformat(),
            "battery_level": self.battery_level,
        }
