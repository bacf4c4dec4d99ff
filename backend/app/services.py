"""
Service container — builds and owns every long-lived component.

Created once in the FastAPI lifespan and stored on ``app.state.services``;
routes reach it through the ``get_services`` dependency. Tests construct
it directly with fakes.

    SafetyServices
        ├── registry      ZoneRegistry (static zones)
        ├── store         OfflineAlertStore (file | redis | memory)
        ├── bus           InMemoryBus
        ├── backend       AlertBackend (http | sql)
        ├── connectivity  ConnectivityMonitor
        ├── relay         AlertRelay
        ├── feed          AdminAlertFeed
        ├── scheduler     ReplayScheduler
        ├── panic         PanicCountdown
        └── sessions      subject_id → GeofenceSession
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from fastapi import Request

from backend.app.alerts.backends import AlertBackend, HttpAlertBackend, SqlAlertBackend
from backend.app.alerts.bus import InMemoryBus, LocalBus
from backend.app.alerts.connectivity import ConnectivityMonitor, ReplayScheduler
from backend.app.alerts.feed import AdminAlertFeed
from backend.app.alerts.panic import PanicCountdown
from backend.app.alerts.relay import AlertRelay
from backend.app.alerts.store import OfflineAlertStore, build_store
from backend.app.core.config import Settings, get_settings
from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.core.redis_pool import close_redis, get_redis
from backend.app.geofence.registry import ZoneRegistry
from backend.app.geofence.session import AlertPreferences, GeofenceSession
from backend.app.tracking.models import TrackingOptions

logger = logging.getLogger(__name__)


def build_backend(settings: Settings) -> AlertBackend:
    if settings.ALERT_BACKEND == "http":
        return HttpAlertBackend(
            base_url=settings.SUPABASE_URL,
            api_key=settings.SUPABASE_SERVICE_ROLE_KEY or "",
            table=settings.ALERTS_TABLE,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
        )
    if settings.ALERT_BACKEND == "sql":
        return SqlAlertBackend(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    raise ValueError(f"Unknown alert backend: {settings.ALERT_BACKEND}")


class SafetyServices:
    """Explicitly wired application services."""

    def __init__(
        self,
        settings: Settings,
        registry: ZoneRegistry,
        store: OfflineAlertStore,
        backend: AlertBackend,
        connectivity: ConnectivityMonitor,
        bus: Optional[LocalBus] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.store = store
        self.backend = backend
        self.connectivity = connectivity
        self.bus = bus or InMemoryBus()
        self.preferences = AlertPreferences.from_values(
            settings.GEOFENCE_ENABLED, settings.GEOFENCE_NOTIFY_CATEGORIES,
        )

        self.relay = AlertRelay(
            backend=backend,
            store=store,
            bus=self.bus,
            connectivity=connectivity,
            fallback_location=(settings.FALLBACK_LATITUDE, settings.FALLBACK_LONGITUDE),
            last_known_location=self.last_known_location,
        )
        self.feed = AdminAlertFeed(self.bus, store)
        self.scheduler = ReplayScheduler(
            self.relay, connectivity, store,
            interval_seconds=settings.REPLAY_INTERVAL_SECONDS,
        )
        self.panic = PanicCountdown(self.relay, settings.PANIC_COUNTDOWN_SECONDS)
        self._sessions: Dict[str, GeofenceSession] = {}
        self._unsubscribe_online = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SafetyServices":
        s = settings or get_settings()
        store = build_store(
            s.OFFLINE_STORE,
            path=s.OFFLINE_STORE_PATH,
            max_records=s.OFFLINE_QUEUE_MAX,
            redis_factory=lambda: get_redis(s.REDIS_URL),
            redis_prefix=s.REDIS_KEY_PREFIX,
        )
        connectivity = ConnectivityMonitor(
            initially_online=s.START_ONLINE,
            probe_url=s.CONNECTIVITY_PROBE_URL,
            timeout=s.BACKEND_TIMEOUT_SECONDS,
        )
        return cls(
            settings=s,
            registry=ZoneRegistry.from_settings(s.ZONES_FILE),
            store=store,
            backend=build_backend(s),
            connectivity=connectivity,
        )

    # ── Lifecycle ──

    async def init(self, start_scheduler: bool = True) -> None:
        if isinstance(self.backend, SqlAlertBackend) and self.settings.is_development:
            await self.backend.create_schema()

        self._unsubscribe_online = self.connectivity.on_online(self.relay.replay_queued)
        if start_scheduler:
            self.scheduler.start()

        logger.info(
            "Services ready: %d zones, backend=%s, offline store=%s",
            len(self.registry), self.backend.name, self.settings.OFFLINE_STORE,
        )

    async def dispose(self) -> None:
        await self.scheduler.stop()
        await self.panic.shutdown()
        if self._unsubscribe_online is not None:
            self._unsubscribe_online()
            self._unsubscribe_online = None

        for session in self._sessions.values():
            session.close()
            await session.drain()
        self._sessions.clear()

        self.feed.close()
        await self.connectivity.close()
        await self.backend.close()
        await self.store.close()
        if self.settings.OFFLINE_STORE == "redis":
            await close_redis()
        logger.info("Services disposed")

    # ── Sessions ──

    def session_for(
        self,
        subject_id: str,
        subject_name: Optional[str] = None,
    ) -> GeofenceSession:
        """Get or create the tracking session for ``subject_id``."""
        if not subject_id or not subject_id.strip():
            raise ValidationError("subject_id is required", field="subject_id")

        session = self._sessions.get(subject_id)
        if session is None:
            session = GeofenceSession(
                subject_id=subject_id,
                registry=self.registry,
                relay=self.relay,
                preferences=self.preferences,
                history_size=self.settings.LOCATION_HISTORY_SIZE,
                subject_name=subject_name,
            )
            self._sessions[subject_id] = session
            logger.info("Session created", extra={"subject_id": subject_id})
        elif subject_name and not session.subject_name:
            session.subject_name = subject_name
        return session

    def find_session(self, subject_id: str) -> Optional[GeofenceSession]:
        return self._sessions.get(subject_id)

    def get_session(self, subject_id: str) -> GeofenceSession:
        session = self._sessions.get(subject_id)
        if session is None:
            raise NotFoundError("TrackingSession", subject_id=subject_id)
        return session

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def last_known_location(self, subject_id: str) -> Optional[Tuple[float, float]]:
        session = self._sessions.get(subject_id)
        return session.last_known_location if session else None

    def default_tracking_options(self) -> TrackingOptions:
        return TrackingOptions(
            high_accuracy=self.settings.TRACKING_HIGH_ACCURACY,
            timeout_ms=self.settings.TRACKING_TIMEOUT_MS,
            max_sample_age_ms=self.settings.TRACKING_MAX_SAMPLE_AGE_MS,
        )


def get_services(request: Request) -> SafetyServices:
    """FastAPI dependency: the app's service container."""
    return request.app.state.services
