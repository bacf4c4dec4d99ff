"""
FastAPI routes: device position stream.

    POST /api/v1/tracking/{subject_id}/start       — start tracking
    POST /api/v1/tracking/{subject_id}/stop        — stop (idempotent)
    POST /api/v1/tracking/{subject_id}/positions   — push a fix
    POST /api/v1/tracking/{subject_id}/errors      — push a location error
    GET  /api/v1/tracking/{subject_id}             — session status
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.app.api.schemas import LocationErrorInput, PositionInput, TrackingOptionsInput
from backend.app.core.errors import location_error_from_code
from backend.app.services import SafetyServices, get_services

router = APIRouter(prefix="/api/v1/tracking", tags=["tracking"])


@router.post(
    "/{subject_id}/start",
    summary="Start tracking a subject",
    description=(
        "Opens the subject's location subscription. Options not given fall "
        "back to the configured defaults. Starting twice returns the "
        "existing subscription."
    ),
)
async def start_tracking(
    subject_id: str,
    body: Optional[TrackingOptionsInput] = None,
    services: SafetyServices = Depends(get_services),
):
    body = body or TrackingOptionsInput()
    session = services.session_for(subject_id, subject_name=body.subject_name)
    handle = session.start(body.to_options(services.default_tracking_options()))
    return {
        "subject_id": subject_id,
        "tracking": True,
        "watch_id": handle.watch_id,
        "options": handle.options.to_dict(),
        "started_at": handle.started_at.isoformat(),
    }


@router.post("/{subject_id}/stop", summary="Stop tracking a subject")
async def stop_tracking(
    subject_id: str,
    services: SafetyServices = Depends(get_services),
):
    session = services.find_session(subject_id)
    if session is not None:
        session.stop()
    return {"subject_id": subject_id, "tracking": False}


@router.post(
    "/{subject_id}/positions",
    summary="Push a position fix",
    description=(
        "Runs the fix through zone matching. Any zone alerts raised are "
        "sent before the response returns; their delivery status is "
        "included."
    ),
)
async def push_position(
    subject_id: str,
    position: PositionInput,
    services: SafetyServices = Depends(get_services),
):
    session = services.get_session(subject_id)
    outcome = session.push_fix(position.to_sample())
    if outcome is None:
        return {
            "subject_id": subject_id,
            "processed": False,
            "tracking": False,
            "detail": "Not tracking — fix cached for the next start",
        }

    await session.drain()
    return {
        "subject_id": subject_id,
        "processed": True,
        "tracking": session.is_tracking,
        "current_zone_id": outcome.evaluation.current_zone_id,
        "transition": outcome.evaluation.transition.value,
        "evaluation": outcome.evaluation.to_dict(),
        "alerts": [a.to_dict() for a in outcome.alerts],
    }


@router.post("/{subject_id}/errors", summary="Report a location failure")
async def push_location_error(
    subject_id: str,
    body: LocationErrorInput,
    services: SafetyServices = Depends(get_services),
):
    session = services.get_session(subject_id)
    error = location_error_from_code(body.code, body.message)
    session.push_error(error)
    return {
        "subject_id": subject_id,
        "code": error.code,
        "error_code": error.error_code,
        "message": error.message,
        "tracking": session.is_tracking,
    }


@router.get("/{subject_id}", summary="Tracking session status")
async def tracking_status(
    subject_id: str,
    history: int = Query(10, ge=0, le=50, description="Recent samples to include"),
    services: SafetyServices = Depends(get_services),
):
    return services.get_session(subject_id).status(history_limit=history)
