"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Alert backend configuration (Supabase REST or SQL)
    • Connectivity state (online / offline)
    • Offline queue depth
    • Redis (only when it backs the offline queue)
    • Disk space for the file-backed offline queue

An offline service or a filling queue is DEGRADED, not UNHEALTHY: alerts
are still accepted and queued locally.
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from backend.app.alerts.backends import HttpAlertBackend
from backend.app.core.config import settings
from backend.app.core.redis_pool import ping_redis

if TYPE_CHECKING:
    from backend.app.services import SafetyServices

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_alert_backend(services: "SafetyServices") -> ComponentHealth:
    """Backend configuration (no write is attempted)."""
    comp = ComponentHealth(name="alert_backend")
    start = time.monotonic()
    backend = services.backend
    comp.details = {"kind": backend.name}

    if isinstance(backend, HttpAlertBackend):
        comp.details["endpoint"] = backend.endpoint
        if not services.settings.SUPABASE_SERVICE_ROLE_KEY:
            comp.status = HealthStatus.DEGRADED
            comp.message = "No service key configured"
        else:
            comp.message = "REST endpoint configured"
    else:
        comp.details["url"] = services.settings.DATABASE_URL.split("@")[-1]
        comp.message = "Database engine configured"

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_connectivity(services: "SafetyServices") -> ComponentHealth:
    comp = ComponentHealth(name="connectivity")
    online = services.connectivity.is_online
    comp.details = {"online": online, "probe_url": services.connectivity.probe_url}
    if online:
        comp.message = "Online"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Offline — alerts are being queued locally"
    return comp


async def check_offline_queue(services: "SafetyServices") -> ComponentHealth:
    """Queue depth against its cap."""
    comp = ComponentHealth(name="offline_queue")
    start = time.monotonic()
    try:
        depth = await services.store.count()
        cap = services.store.max_records
        comp.details = {"depth": depth, "max": cap, "store": services.settings.OFFLINE_STORE}
        if depth >= cap:
            comp.status = HealthStatus.DEGRADED
            comp.message = "Queue full — oldest alerts are being dropped"
        else:
            comp.message = f"{depth} queued"
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_redis() -> ComponentHealth:
    """Check Redis connectivity."""
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    url = settings.REDIS_URL
    comp.details = {"url": url.split("@")[-1]}
    if await ping_redis():
        comp.message = "Offline queue store available"
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Redis unreachable"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_disk_space(path: str = ".") -> ComponentHealth:
    """Check available disk space."""
    comp = ComponentHealth(name="disk_space")
    start = time.monotonic()
    try:
        target = Path(path)
        while not target.exists() and target != target.parent:
            target = target.parent
        total, used, free = shutil.disk_usage(target)
        free_mb = free / (1024 ** 2)

        comp.details = {
            "path": str(target),
            "free_mb": round(free_mb, 1),
            "used_pct": round((used / total) * 100, 1),
        }

        if free_mb < 10:
            comp.status = HealthStatus.UNHEALTHY
            comp.message = f"Low disk space: {free_mb:.1f} MB free"
        elif free_mb < 100:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Disk space warning: {free_mb:.1f} MB free"
        else:
            comp.message = f"{free_mb:.0f} MB free"
    except OSError as e:
        comp.status = HealthStatus.DEGRADED
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(services: Optional["SafetyServices"] = None) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = []
    if services is not None:
        checks += [
            check_alert_backend(services),
            check_connectivity(services),
            check_offline_queue(services),
        ]
        if services.settings.OFFLINE_STORE == "redis":
            checks.append(check_redis())
        if services.settings.OFFLINE_STORE == "file":
            checks.append(check_disk_space(str(Path(services.settings.OFFLINE_STORE_PATH).parent)))

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status != HealthStatus.HEALTHY:
        logger.warning("Health check: %s", report.status.value)
    return report
