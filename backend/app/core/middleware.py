"""
Request middleware — correlation IDs, timing, per-request log context.

Every request gets:
    • an X-Request-ID (taken from the caller or generated)
    • an X-Process-Time response header
    • one structured log line on completion
    • request context for downstream loggers, including the tracked
      ``subject_id`` when the path names one
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# /api/v1/tracking/{subject_id}/... and /api/v1/alerts/panic/{subject_id}
_SUBJECT_PATH = re.compile(r"^/api/v1/(?:tracking|alerts/panic)/([^/]+)")

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


def _subject_from_path(path: str) -> Optional[str]:
    match = _SUBJECT_PATH.match(path)
    return match.group(1) if match else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with timing; inject a correlation ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:16])
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        context = {
            "request_id": request_id,
            "client_ip": client_ip,
            "endpoint": path,
            "method": request.method,
        }
        subject_id = _subject_from_path(path)
        if subject_id:
            context["subject_id"] = subject_id
        set_request_context(**context)

        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms) [%s]",
                request.method, path, duration_ms, client_ip,
                extra={"duration_ms": duration_ms, "status_code": 500},
            )
            set_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        # Probes and docs only at DEBUG
        if path.startswith(_QUIET_PREFIXES):
            log_level = logging.DEBUG
        elif response.status_code >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO
        logger.log(
            log_level,
            "%s %s → %d (%.1fms) [%s]",
            request.method, path, response.status_code, duration_ms, client_ip,
            extra={
                "duration_ms": duration_ms,
                "status_code": response.status_code,
                "endpoint": path,
            },
        )

        set_request_context()
        return response
