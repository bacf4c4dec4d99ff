"""
matcher.py — Zone membership and transition detection.

Pure functions: no I/O, no clock, no shared state. Given a position
sample, the zone list and the subject's previous zone, ``evaluate``
returns the current zone and the transition it implies.

═══════════════════════════════════════════════════════════════════════════
MEMBERSHIP
═══════════════════════════════════════════════════════════════════════════

A subject is inside a zone if:

    haversine(sample, zone.center) ≤ zone.radius_m

A bounding-box pre-filter rejects far-away zones with plain float
comparisons before the trigonometry runs.

═══════════════════════════════════════════════════════════════════════════
OVERLAPS
═══════════════════════════════════════════════════════════════════════════

When a sample falls inside several zones, exactly one is chosen:

    1. smallest radius (most specific zone) wins
    2. equal radii → lowest zone_id

The choice is independent of the order of the zone list.

═══════════════════════════════════════════════════════════════════════════
TRANSITIONS
═══════════════════════════════════════════════════════════════════════════

    previous    current     transition   zone
    ────────    ───────     ──────────   ─────────────
    None        None        NONE         None
    None        A           ENTER        A
    A           A           NONE         A
    A           B           ENTER        B
    A           None        EXIT         A
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from backend.app.core.errors import ZoneConfigurationError
from backend.app.geofence.models import Transition, Zone, ZoneEvaluation
from backend.app.spatial.geodesy import bounding_box, inside_bbox, is_inside_circle
from backend.app.tracking.models import PositionSample

logger = logging.getLogger(__name__)


def index_zones(zones: Sequence[Zone]) -> Dict[str, Zone]:
    """
    Map zone_id → Zone, rejecting duplicate ids.

    Raises
    ------
    ZoneConfigurationError
        If two zones share an id.
    """
    by_id: Dict[str, Zone] = {}
    for zone in zones:
        if zone.zone_id in by_id:
            raise ZoneConfigurationError(
                f"Duplicate zone id: {zone.zone_id}", zone_id=zone.zone_id,
            )
        by_id[zone.zone_id] = zone
    return by_id


def zones_containing(
    sample: PositionSample,
    zones: Sequence[Zone],
) -> List[Tuple[Zone, float]]:
    """All zones containing the sample, with their center distances (m)."""
    point = sample.coordinate
    matches: List[Tuple[Zone, float]] = []

    for zone in zones:
        if not inside_bbox(
            sample.latitude, sample.longitude,
            bounding_box(zone.center, zone.radius_m),
        ):
            continue
        inside, dist = is_inside_circle(point, zone.center, zone.radius_m)
        if inside:
            matches.append((zone, dist))

    return matches


def select_zone(matches: Sequence[Tuple[Zone, float]]) -> Optional[Tuple[Zone, float]]:
    """Pick one zone out of overlapping matches: smallest radius, then id."""
    if not matches:
        return None
    return min(matches, key=lambda m: (m[0].radius_m, m[0].zone_id))


def evaluate(
    sample: PositionSample,
    zones: Sequence[Zone],
    previous_zone_id: Optional[str],
) -> ZoneEvaluation:
    """
    Derive the subject's current zone and transition from one sample.

    Parameters
    ----------
    sample : PositionSample
        Latest fix.
    zones : sequence of Zone
        Static zone configuration for the session.
    previous_zone_id : str | None
        Zone the subject was in before this sample.

    Returns
    -------
    ZoneEvaluation

    Raises
    ------
    ZoneConfigurationError
        Duplicate zone ids, or ``previous_zone_id`` not in ``zones``.

    Examples
    --------
    >>> zone = Zone("Z1", "Market", 11.030, 76.992, 20.0, "high_risk")
    >>> evaluate(PositionSample(11.030, 76.992), [zone], None).transition.value
    'enter'
    >>> evaluate(PositionSample(11.035, 76.992), [zone], "Z1").transition.value
    'exit'
    """
    by_id = index_zones(zones)

    previous_zone: Optional[Zone] = None
    if previous_zone_id is not None:
        previous_zone = by_id.get(previous_zone_id)
        if previous_zone is None:
            raise ZoneConfigurationError(
                f"Previous zone {previous_zone_id} is not in the zone list",
                zone_id=previous_zone_id,
            )

    matches = zones_containing(sample, zones)
    chosen = select_zone(matches)
    if len(matches) > 1:
        logger.debug(
            "Sample inside %d overlapping zones — using %s",
            len(matches), chosen[0].zone_id,
        )

    if chosen is None:
        if previous_zone is None:
            return ZoneEvaluation(None, Transition.NONE, None)
        return ZoneEvaluation(None, Transition.EXIT, previous_zone)

    zone, dist = chosen
    if zone.zone_id == previous_zone_id:
        return ZoneEvaluation(zone.zone_id, Transition.NONE, zone, dist)
    return ZoneEvaluation(zone.zone_id, Transition.ENTER, zone, dist)
