"""
geodesy.py — Great-circle distance and circle membership for geofencing.

Provides:
    - Coordinate value type with range validation
    - Haversine distance between two (lat, lon) points, in meters
    - Point-in-circle test used by the zone matcher
    - Bounding box of a circle (cheap rectangular pre-filter)

All distances are in **meters**. Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where R is the Earth's mean radius (6 371 008.8 m, IAU).

At geofence scale (tens to thousands of meters) the spherical model is
accurate to well under a meter, far below typical GPS accuracy.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M: float = 6_371_008.8  # IAU mean radius


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @property
    def lat_rad(self) -> float:
        """Latitude in radians."""
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        """Longitude in radians."""
        return math.radians(self.longitude)


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine_m(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points, in meters.

    The result is not rounded: membership tests compare it directly
    against a zone radius.

    Examples
    --------
    >>> round(haversine_m(Coordinate(11.030, 76.992), Coordinate(11.035, 76.992)), 1)
    556.0
    >>> haversine_m(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )
    # Float error can push a fractionally above 1 for antipodal points
    a = min(1.0, a)

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def is_inside_circle(
    point: Coordinate,
    center: Coordinate,
    radius_m: float,
) -> Tuple[bool, float]:
    """
    Check whether ``point`` lies inside the circle (inclusive boundary).

    Returns
    -------
    (inside, distance_m)
    """
    if radius_m <= 0:
        raise ValueError(f"Radius must be positive, got {radius_m}")

    dist = haversine_m(point, center)
    return (dist <= radius_m, dist)


# ---------------------------------------------------------------------------
# Bounding-box pre-filter
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_m: float) -> Tuple[float, float, float, float]:
    """
    Lat/lon box fully containing the circle (center, radius_m).

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees.

    A circle that reaches a pole gets the full longitude range. A circle
    crossing the antimeridian keeps an unwrapped range, so ``min_lon`` may
    be below -180 or ``max_lon`` above 180; ``inside_bbox`` accounts for it.
    """
    angular = radius_m / EARTH_RADIUS_M

    min_lat = center.latitude - math.degrees(angular)
    max_lat = center.latitude + math.degrees(angular)

    if min_lat <= -90.0 or max_lat >= 90.0:
        return (max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    # Exact longitude half-width at the circle's widest point
    delta_lon = math.degrees(math.asin(math.sin(angular) / math.cos(center.lat_rad)))

    return (
        min_lat,
        max_lat,
        center.longitude - delta_lon,
        center.longitude + delta_lon,
    )


def inside_bbox(
    lat: float, lon: float,
    box: Tuple[float, float, float, float],
) -> bool:
    """Quick rectangular check, tolerant of boxes spanning the antimeridian."""
    min_lat, max_lat, min_lon, max_lon = box
    if not min_lat <= lat <= max_lat:
        return False
    return any(min_lon <= candidate <= max_lon for candidate in (lon, lon - 360.0, lon + 360.0))


# ---------------------------------------------------------------------------
# Utility: Human-readable distance
# ---------------------------------------------------------------------------

def format_distance(meters: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(450.2)
    '450 m'
    >>> format_distance(3726.6)
    '3.73 km'
    """
    if meters < 1000.0:
        return f"{int(meters)} m"
    return f"{meters / 1000.0:.2f} km"
