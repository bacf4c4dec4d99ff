"""
registry.py — Static zone configuration for a session.

Zones come from a JSON file (``settings.ZONES_FILE``) or, when none is
configured, from the built-in set below. The file holds a list of
objects:

    [
      {"zone_id": "cbe-crime-01", "name": "High Crime Area",
       "latitude": 11.030, "longitude": 76.992, "radius_m": 220,
       "category": "high_risk", "description": "..."}
    ]

Zone CRUD belongs to the admin tooling; this module only reads.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from backend.app.core.errors import ZoneConfigurationError
from backend.app.geofence.matcher import index_zones
from backend.app.geofence.models import Zone, ZoneCategory

logger = logging.getLogger(__name__)


DEFAULT_ZONES: List[Zone] = [
    Zone(
        zone_id="cbe-crime-01",
        name="High Crime Area",
        latitude=11.030, longitude=76.992, radius_m=220.0,
        category=ZoneCategory.HIGH_RISK,
        description="Reported thefts after dark. Keep valuables out of sight.",
    ),
    Zone(
        zone_id="cbe-works-01",
        name="Construction Zone",
        latitude=11.028, longitude=76.990, radius_m=110.0,
        category=ZoneCategory.CAUTION,
        description="Open trenches and heavy vehicles. Use marked walkways.",
    ),
    Zone(
        zone_id="cbe-restricted-01",
        name="Restricted Area",
        latitude=11.032, longitude=76.994, radius_m=165.0,
        category=ZoneCategory.RESTRICTED,
        description="No public access.",
    ),
    Zone(
        zone_id="cbe-police-01",
        name="Tourist Police Post",
        latitude=11.0168, longitude=76.9558, radius_m=150.0,
        category=ZoneCategory.SAFE,
        description="Staffed 24 hours. Ask here for help.",
    ),
]


def _zone_from_dict(raw: Dict[str, Any]) -> Zone:
    try:
        return Zone(
            zone_id=str(raw["zone_id"]),
            name=str(raw.get("name", raw["zone_id"])),
            latitude=float(raw["latitude"]),
            longitude=float(raw["longitude"]),
            radius_m=float(raw["radius_m"]),
            category=ZoneCategory(raw.get("category", ZoneCategory.CAUTION.value)),
            description=str(raw.get("description", "")),
        )
    except KeyError as e:
        raise ZoneConfigurationError(f"Zone entry missing field {e}", entry=raw) from e
    except (TypeError, ValueError) as e:
        raise ZoneConfigurationError(f"Invalid zone entry: {e}", entry=raw) from e


def load_zones(path: Path) -> List[Zone]:
    """Read and validate a JSON zone list."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ZoneConfigurationError(f"Cannot read zones file: {e}", path=str(path)) from e
    except json.JSONDecodeError as e:
        raise ZoneConfigurationError(f"Zones file is not valid JSON: {e}", path=str(path)) from e

    if not isinstance(data, list):
        raise ZoneConfigurationError("Zones file must contain a JSON list", path=str(path))

    zones = [_zone_from_dict(item) for item in data]
    logger.info("Loaded %d zones from %s", len(zones), path)
    return zones


class ZoneRegistry:
    """Immutable, validated zone list with lookup by id."""

    def __init__(self, zones: Sequence[Zone]):
        self._by_id = index_zones(zones)
        self._zones = tuple(zones)

    @classmethod
    def from_settings(cls, zones_file: Optional[str]) -> "ZoneRegistry":
        if zones_file:
            return cls(load_zones(Path(zones_file)))
        logger.info("No zones file configured — using %d built-in zones", len(DEFAULT_ZONES))
        return cls(DEFAULT_ZONES)

    @property
    def zones(self) -> Sequence[Zone]:
        return self._zones

    def get(self, zone_id: str) -> Optional[Zone]:
        return self._by_id.get(zone_id)

    def __len__(self) -> int:
        return len(self._zones)

    def __iter__(self) -> Iterator[Zone]:
        return iter(self._zones)
