"""
relay.py — Alert Relay: backend delivery with offline fallback.

═══════════════════════════════════════════════════════════════════════════
SEND
═══════════════════════════════════════════════════════════════════════════

    1. validate subject_id (ValidationError before any I/O)
    2. fill a missing location:
           record location → subject's last known fix → configured placeholder
    3. online  → backend.insert_alert(record)
           ok      → DELIVERED (+ GEOFENCE_ALERT on the bus if admin-visible)
           failure → offline fallback
       offline → offline fallback

    Offline fallback:
        offline=True, stored_at=now, status=QUEUED_OFFLINE
        store.append(record)        (FAILED if the store itself fails)
        bus.publish(OFFLINE_ALERT)  (always, so local admins still see it)

``send`` never raises for delivery problems; callers get a RelayResult
whose ``user_message`` is "alert sent", "alert sent — will retry when
back online", or, when even the offline store failed, a plea to call
emergency services directly.

═══════════════════════════════════════════════════════════════════════════
REPLAY
═══════════════════════════════════════════════════════════════════════════

``replay_queued`` walks the queue oldest-first while online. Each record
that the backend accepts is removed immediately; failures stay queued for
the next trigger. There is no backoff. Replays are serialised by a lock,
so overlapping triggers (online event + scheduler tick + manual call)
cannot deliver the same record twice.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from backend.app.alerts.backends import AlertBackend
from backend.app.alerts.bus import LocalBus
from backend.app.alerts.connectivity import ConnectivityMonitor
from backend.app.alerts.models import (
    AlertRecord,
    BusMessage,
    BusMessageType,
    DeliveryStatus,
    RelayResult,
    ReplayReport,
)
from backend.app.alerts.store import OfflineAlertStore
from backend.app.core.errors import ValidationError

logger = logging.getLogger(__name__)

LatLng = Tuple[float, float]
LocationLookup = Callable[[str], Optional[LatLng]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AlertRelay:
    """
    Delivers AlertRecords to the hosted backend, falling back to the
    offline queue and the local bus.

    Parameters
    ----------
    backend : AlertBackend
        Remote sink (HTTP or SQL).
    store : OfflineAlertStore
        Bounded offline queue.
    bus : LocalBus
        Same-host broadcast for admin views.
    connectivity : ConnectivityMonitor
        Online/offline state.
    fallback_location : (lat, lng)
        Placeholder used when no location is known at all.
    last_known_location : callable, optional
        ``subject_id → (lat, lng) | None`` — usually the tracking session's
        latest fix.
    """

    def __init__(
        self,
        backend: AlertBackend,
        store: OfflineAlertStore,
        bus: LocalBus,
        connectivity: ConnectivityMonitor,
        fallback_location: LatLng = (0.0, 0.0),
        last_known_location: Optional[LocationLookup] = None,
    ):
        self.backend = backend
        self.store = store
        self.bus = bus
        self.connectivity = connectivity
        self.fallback_location = fallback_location
        self._last_known_location = last_known_location
        self._replay_lock = asyncio.Lock()

    # ── Send ──

    def _fill_location(self, record: AlertRecord) -> None:
        if record.has_location:
            return
        location = None
        if self._last_known_location is not None:
            location = self._last_known_location(record.subject_id)
        if location is None:
            location = self.fallback_location
            logger.info(
                "No location for alert — using placeholder",
                extra={"alert_id": record.alert_id, "subject_id": record.subject_id},
            )
        record.latitude, record.longitude = location

    async def send(self, record: AlertRecord, *, notify_admin: bool = False) -> RelayResult:
        """
        Deliver ``record`` or queue it offline.

        ``notify_admin`` additionally publishes a delivered record on the
        bus as GEOFENCE_ALERT (high-risk / restricted zone transitions).

        Raises
        ------
        ValidationError
            Missing ``subject_id``.
        """
        if not record.subject_id or not record.subject_id.strip():
            raise ValidationError("subject_id is required", field="subject_id")

        self._fill_location(record)

        if not self.connectivity.is_online:
            return await self._queue_offline(record, "offline")

        try:
            await self.backend.insert_alert(record)
        except Exception as e:
            # Any backend failure falls back to the offline queue
            logger.warning(
                "Backend write failed (%s) — queueing offline", e,
                extra={"alert_id": record.alert_id, "subject_id": record.subject_id},
            )
            return await self._queue_offline(record, str(e))

        record.status = DeliveryStatus.DELIVERED
        logger.info(
            "Alert delivered: %s/%s", record.category.value, record.severity.value,
            extra={"alert_id": record.alert_id, "subject_id": record.subject_id},
        )
        if notify_admin:
            self.bus.publish(BusMessage(BusMessageType.GEOFENCE_ALERT, record))
        return RelayResult(record)

    async def _queue_offline(self, record: AlertRecord, reason: str) -> RelayResult:
        record.offline = True
        record.stored_at = _now()
        record.status = DeliveryStatus.QUEUED_OFFLINE
        error_message: Optional[str] = reason

        try:
            depth = await self.store.append(record)
        except Exception as e:
            record.status = DeliveryStatus.FAILED
            error_message = f"{reason}; offline store failed: {e}"
            logger.error(
                "Offline store write failed: %s", e,
                extra={"alert_id": record.alert_id, "subject_id": record.subject_id},
            )
        else:
            logger.info(
                "Alert queued offline (%s)", reason,
                extra={"alert_id": record.alert_id, "queue_depth": depth},
            )

        self.bus.publish(BusMessage(BusMessageType.OFFLINE_ALERT, record))
        return RelayResult(record, error_message=error_message)

    # ── Replay ──

    async def replay_queued(self) -> ReplayReport:
        """Attempt delivery of every queued record (oldest first)."""
        async with self._replay_lock:
            if not self.connectivity.is_online:
                return ReplayReport(
                    remaining=await self.store.count(), skipped_offline=True,
                )

            report = ReplayReport()
            for record in await self.store.list_records():
                if not self.connectivity.is_online:
                    logger.info("Went offline during replay — stopping")
                    break

                report.attempted += 1
                try:
                    await self.backend.insert_alert(record, synced_at=_now())
                except Exception as e:
                    report.failed += 1
                    logger.warning(
                        "Replay failed (%s) — keeping queued", e,
                        extra={"alert_id": record.alert_id},
                    )
                    continue

                record.status = DeliveryStatus.DELIVERED
                await self.store.remove([record.alert_id])
                report.delivered += 1

            report.remaining = await self.store.count()

        if report.attempted:
            logger.info(
                "Replay: %d/%d delivered, %d failed",
                report.delivered, report.attempted, report.failed,
                extra={"queue_depth": report.remaining},
            )
        return report
