"""
FastAPI routes: user alerts, offline queue, connectivity, admin feed.

    POST   /api/v1/alerts/emergency             — raise an alert now
    POST   /api/v1/alerts/panic/{subject_id}    — arm the panic countdown
    GET    /api/v1/alerts/panic/{subject_id}    — countdown state
    DELETE /api/v1/alerts/panic/{subject_id}    — cancel the countdown
    GET    /api/v1/alerts/offline               — offline queue contents
    POST   /api/v1/alerts/replay                — replay the offline queue
    POST   /api/v1/alerts/network               — report online / offline

    GET    /api/v1/admin/feed                   — recent alerts, newest first
    POST   /api/v1/admin/feed/{alert_id}/ack    — acknowledge an alert
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.app.alerts.models import DEFAULT_SEVERITY, AlertRecord
from backend.app.api.schemas import (
    EmergencyAlertRequest,
    NetworkStatusRequest,
    OfflineQueueResponse,
    PanicArmRequest,
    RelayResponse,
    ReplayResponse,
)
from backend.app.services import SafetyServices, get_services

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])
admin_router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# User alerts
# ---------------------------------------------------------------------------

@router.post(
    "/emergency",
    response_model=RelayResponse,
    summary="Raise an emergency alert",
    description=(
        "Delivers the alert to the backend, or queues it locally when the "
        "backend is unreachable. Delivery problems never fail the request."
    ),
)
async def raise_emergency(
    request: EmergencyAlertRequest,
    services: SafetyServices = Depends(get_services),
):
    category = request.category.to_category()
    record = AlertRecord(
        subject_id=request.subject_id,
        subject_name=request.subject_name,
        category=category,
        severity=request.severity or DEFAULT_SEVERITY[category],
        message=request.message,
        latitude=request.latitude,
        longitude=request.longitude,
        device_info=request.device_info,
    )
    result = await services.relay.send(record)
    return RelayResponse(**result.to_dict())


@router.post("/panic/{subject_id}", summary="Arm the panic countdown")
async def arm_panic(
    subject_id: str,
    body: Optional[PanicArmRequest] = None,
    services: SafetyServices = Depends(get_services),
):
    body = body or PanicArmRequest()
    fires_at = services.panic.arm(
        subject_id,
        subject_name=body.subject_name,
        message=body.message,
        latitude=body.latitude,
        longitude=body.longitude,
        device_info=body.device_info,
    )
    return {
        "subject_id": subject_id,
        "armed": True,
        "countdown_seconds": services.panic.seconds,
        "fires_at": fires_at.isoformat(),
    }


@router.get("/panic/{subject_id}", summary="Panic countdown state")
async def panic_state(subject_id: str, services: SafetyServices = Depends(get_services)):
    last = services.panic.last_results.get(subject_id)
    return {
        "subject_id": subject_id,
        "armed": services.panic.is_armed(subject_id),
        "remaining_seconds": services.panic.remaining_seconds(subject_id),
        "last_result": last.to_dict() if last else None,
    }


@router.delete("/panic/{subject_id}", summary="Cancel the panic countdown")
async def cancel_panic(subject_id: str, services: SafetyServices = Depends(get_services)):
    return {
        "subject_id": subject_id,
        "cancelled": services.panic.cancel(subject_id),
    }


# ---------------------------------------------------------------------------
# Offline queue & connectivity
# ---------------------------------------------------------------------------

@router.get("/offline", response_model=OfflineQueueResponse, summary="Offline queue")
async def offline_queue(services: SafetyServices = Depends(get_services)):
    records = await services.store.list_records()
    return OfflineQueueResponse(
        count=len(records),
        max=services.store.max_records,
        records=[r.to_dict() for r in records],
    )


@router.post("/replay", response_model=ReplayResponse, summary="Replay queued alerts")
async def replay(services: SafetyServices = Depends(get_services)):
    report = await services.relay.replay_queued()
    return ReplayResponse(**report.to_dict())


@router.post(
    "/network",
    summary="Report network status",
    description="Going online triggers an immediate replay of queued alerts.",
)
async def report_network(
    body: NetworkStatusRequest,
    services: SafetyServices = Depends(get_services),
):
    changed = await services.connectivity.set_online(body.online)
    return {
        "online": services.connectivity.is_online,
        "changed": changed,
        "queue_depth": await services.store.count(),
    }


# ---------------------------------------------------------------------------
# Admin feed
# ---------------------------------------------------------------------------

@admin_router.get("/feed", summary="Recent alerts for admin views")
async def admin_feed(
    limit: int = Query(50, ge=1, le=50),
    refresh: bool = Query(False, description="Also pull the offline queue"),
    services: SafetyServices = Depends(get_services),
):
    if refresh:
        await services.feed.refresh_from_store()
    entries = services.feed.entries(limit)
    return {
        "count": len(entries),
        "offline_received": services.feed.offline_received,
        "entries": [e.to_dict() for e in entries],
    }


@admin_router.post("/feed/{alert_id}/ack", summary="Acknowledge an alert")
async def acknowledge(alert_id: str, services: SafetyServices = Depends(get_services)):
    return services.feed.acknowledge(alert_id).to_dict()
