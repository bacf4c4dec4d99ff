"""
FastAPI routes: configured zones (read-only).

    GET /api/v1/zones             — all zones
    GET /api/v1/zones/{zone_id}   — one zone
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.app.core.errors import NotFoundError
from backend.app.geofence.models import ZoneCategory
from backend.app.services import SafetyServices, get_services

router = APIRouter(prefix="/api/v1/zones", tags=["zones"])


@router.get("", summary="List configured zones")
async def list_zones(
    category: Optional[ZoneCategory] = Query(None, description="Filter by category"),
    services: SafetyServices = Depends(get_services),
):
    zones = [z for z in services.registry if category is None or z.category == category]
    return {
        "count": len(zones),
        "zones": [z.to_dict() for z in zones],
    }


@router.get("/{zone_id}", summary="Get one zone")
async def get_zone(zone_id: str, services: SafetyServices = Depends(get_services)):
    zone = services.registry.get(zone_id)
    if zone is None:
        raise NotFoundError("Zone", zone_id=zone_id)
    return zone.to_dict()
