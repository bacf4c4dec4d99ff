"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain exceptions (not found, validation, backend failure, zone config)
    • Location errors mirroring the W3C geolocation codes 1/2/3
    • One JSON error envelope for domain, request-validation and unhandled errors
    • Request context in error responses (non-production)

Usage:
    from backend.app.core.errors import (
        SafetyAPIError,
        NotFoundError,
        ValidationError,
        ExternalServiceError,
        ZoneConfigurationError,
        register_error_handlers,
    )

    raise NotFoundError("TrackingSession", subject_id="T-001")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SafetyAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(SafetyAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(SafetyAPIError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class ExternalServiceError(SafetyAPIError):
    """External API call failed (502)."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code="EXTERNAL_SERVICE_ERROR",
            details={"service": service, **details},
        )


class ZoneConfigurationError(SafetyAPIError):
    """Zone list is malformed or inconsistent with session state (500)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code="ZONE_CONFIGURATION_ERROR",
            details=details,
        )


class LocationError(SafetyAPIError):
    """Base for failures reported by the location provider."""

    code: int = 0

    def __init__(self, message: str, *, status_code: int, error_code: str):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details={"location_error_code": self.code},
        )


class LocationPermissionDenied(LocationError):
    """User or platform refused location access (403)."""

    code = 1

    def __init__(self, message: str = "Location access denied by user"):
        super().__init__(
            message, status_code=403, error_code="LOCATION_PERMISSION_DENIED",
        )


class LocationUnavailable(LocationError):
    """No position could be determined (503)."""

    code = 2

    def __init__(self, message: str = "Location information unavailable"):
        super().__init__(
            message, status_code=503, error_code="LOCATION_UNAVAILABLE",
        )


class LocationTimeout(LocationError):
    """No fix arrived within the configured timeout (504)."""

    code = 3

    def __init__(self, message: str = "Location request timed out"):
        super().__init__(
            message, status_code=504, error_code="LOCATION_TIMEOUT",
        )


LOCATION_ERRORS_BY_CODE = {
    LocationPermissionDenied.code: LocationPermissionDenied,
    LocationUnavailable.code: LocationUnavailable,
    LocationTimeout.code: LocationTimeout,
}


def location_error_from_code(code: int, message: Optional[str] = None) -> LocationError:
    """Map a W3C geolocation error code (1/2/3) to its exception."""
    cls = LOCATION_ERRORS_BY_CODE.get(code)
    if cls is None:
        raise ValidationError(
            f"Unknown location error code: {code}", field="code", code=code,
        )
    return cls(message) if message else cls()


# ═══════════════════════════════════════════════════════════════════════════
# Error Envelope
# ═══════════════════════════════════════════════════════════════════════════

def error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> Dict[str, Any]:
    """
    JSON envelope shared by every error response::

        {"error": {"code": "NOT_FOUND", "message": "...", "status": 404,
                   "details": {...}, "path": "...", "method": "GET"}}

    ``path``/``method`` are omitted in production.
    """
    error: Dict[str, Any] = {
        "code": error_code,
        "message": message,
        "status": status_code,
    }
    if details:
        error["details"] = details
    if request is not None and not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return {"error": error}


def _log_api_error(exc: SafetyAPIError) -> None:
    # Client-side problems are routine; only 5xx are errors
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level, "%s: %s", exc.error_code, exc.message,
        extra={"status_code": exc.status_code},
    )


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(SafetyAPIError)
    async def handle_safety_error(request: Request, exc: SafetyAPIError):
        _log_api_error(exc)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(
                exc.status_code, exc.error_code, exc.message, exc.details, request,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        fields = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        logger.warning("Request validation failed: %d field(s)", len(fields))
        return JSONResponse(
            status_code=422,
            content=error_body(
                422, "VALIDATION_ERROR", "Request validation failed",
                {"fields": fields}, request,
            ),
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return JSONResponse(
            status_code=422,
            content=error_body(422, "VALIDATION_ERROR", str(exc), request=request),
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled exception: %s", exc, exc_info=exc)
        details = (
            {"traceback": traceback.format_exception(type(exc), exc, exc.__traceback__)}
            if settings.DEBUG else None
        )
        return JSONResponse(
            status_code=500,
            content=error_body(
                500, "INTERNAL_ERROR",
                str(exc) if settings.DEBUG else "Internal server error",
                details, request,
            ),
        )
