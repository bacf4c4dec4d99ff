"""
session.py — Per-subject tracking session.

Wires the three stages together for one tracked subject:

    PushLocationProvider ─► PositionWatcher ─► evaluate() ─► AlertRelay
                                                  │
                                             ZoneMembership

The session owns the subject's ZoneMembership. Every sample is evaluated
against the previous zone; transitions become AlertRecords that are sent
as asyncio tasks (sends are not ordered across samples). A direct move
from zone A into zone B produces ``exit(A)`` followed by ``enter(B)``.

Alert preferences
-----------------
    enabled              False silences all zone alerts (membership still
                         tracked)
    notify_categories    zone categories that raise alerts
                         (default: caution, high_risk, restricted)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from backend.app.alerts.models import AlertRecord, RelayResult
from backend.app.alerts.relay import AlertRelay
from backend.app.core.errors import LocationError
from backend.app.geofence.matcher import evaluate
from backend.app.geofence.models import (
    ADMIN_VISIBLE_CATEGORIES,
    Transition,
    Zone,
    ZoneCategory,
    ZoneEvaluation,
    ZoneMembership,
)
from backend.app.geofence.registry import ZoneRegistry
from backend.app.tracking.models import PositionSample, TrackingOptions
from backend.app.tracking.providers import PushLocationProvider
from backend.app.tracking.watcher import PositionWatcher, TrackingHandle

logger = logging.getLogger(__name__)

DEFAULT_NOTIFY_CATEGORIES = frozenset({
    ZoneCategory.CAUTION, ZoneCategory.HIGH_RISK, ZoneCategory.RESTRICTED,
})


@dataclass(frozen=True)
class AlertPreferences:
    """Which zone transitions raise alerts."""
    enabled: bool = True
    notify_categories: FrozenSet[ZoneCategory] = DEFAULT_NOTIFY_CATEGORIES

    @classmethod
    def from_values(cls, enabled: bool, categories: Iterable[str]) -> "AlertPreferences":
        return cls(
            enabled=enabled,
            notify_categories=frozenset(ZoneCategory(c) for c in categories),
        )

    def allows(self, zone: Zone) -> bool:
        return self.enabled and zone.category in self.notify_categories

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "notify_categories": sorted(c.value for c in self.notify_categories),
        }


@dataclass
class SampleOutcome:
    """What one sample did to the session."""
    sample: PositionSample
    evaluation: ZoneEvaluation
    alerts: List[AlertRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample": self.sample.to_dict(),
            "evaluation": self.evaluation.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
        }


class GeofenceSession:
    """
    Tracking session for one subject.

    Must be driven from inside a running event loop: transition alerts
    are scheduled as tasks on it.
    """

    def __init__(
        self,
        subject_id: str,
        registry: ZoneRegistry,
        relay: AlertRelay,
        provider: Optional[PushLocationProvider] = None,
        preferences: Optional[AlertPreferences] = None,
        history_size: int = 50,
        subject_name: Optional[str] = None,
        recent_alerts_size: int = 20,
    ):
        self.subject_id = subject_id
        self.subject_name = subject_name
        self.registry = registry
        self.relay = relay
        self.preferences = preferences or AlertPreferences()
        self.provider = provider or PushLocationProvider()
        self.watcher = PositionWatcher(self.provider, history_size=history_size)
        self.membership = ZoneMembership(subject_id)

        self.last_error: Optional[LocationError] = None
        self.last_outcome: Optional[SampleOutcome] = None
        self.recent_alerts: Deque[AlertRecord] = deque(maxlen=recent_alerts_size)
        self._pending: Set[asyncio.Task] = set()
        self._unsubscribe = self.watcher.subscribe(self._on_sample, self._on_error)

    # ── Lifecycle ──

    @property
    def is_tracking(self) -> bool:
        return self.watcher.is_tracking

    def start(self, options: Optional[TrackingOptions] = None) -> TrackingHandle:
        return self.watcher.start_tracking(options)

    def stop(self) -> None:
        """Stop tracking and clear membership. In-flight sends continue."""
        self.watcher.stop_tracking()
        self.membership.clear()

    def close(self) -> None:
        self.stop()
        self._unsubscribe()

    # ── Device input ──

    def push_fix(self, sample: PositionSample) -> Optional[SampleOutcome]:
        """
        Feed one fix from the device.

        Returns the outcome, or None when the session is not tracking (the
        fix is still cached by the provider for the next start).
        """
        self.last_outcome = None
        self.provider.push_fix(sample)
        return self.last_outcome

    def push_error(self, error: LocationError) -> None:
        self.provider.push_error(error)

    # ── Watcher callbacks ──

    def _on_sample(self, sample: PositionSample) -> None:
        previous_zone_id = self.membership.current_zone_id
        evaluation = evaluate(sample, self.registry.zones, previous_zone_id)
        self.membership.apply(evaluation)
        self.last_error = None

        alerts: List[AlertRecord] = []
        for zone, transition in self._transitions(previous_zone_id, evaluation):
            logger.info(
                "Zone %s: %s", transition.value, zone.name,
                extra={
                    "subject_id": self.subject_id,
                    "zone_id": zone.zone_id,
                    "transition": transition.value,
                },
            )
            if not self.preferences.allows(zone):
                continue
            record = AlertRecord.for_transition(
                self.subject_id, zone, transition,
                sample.latitude, sample.longitude,
                subject_name=self.subject_name,
            )
            alerts.append(record)
            self.recent_alerts.append(record)
            self._dispatch(record, notify_admin=zone.category in ADMIN_VISIBLE_CATEGORIES)

        self.last_outcome = SampleOutcome(sample, evaluation, alerts)

    def _transitions(
        self,
        previous_zone_id: Optional[str],
        evaluation: ZoneEvaluation,
    ) -> List[Tuple[Zone, Transition]]:
        if evaluation.transition == Transition.EXIT and evaluation.zone is not None:
            return [(evaluation.zone, Transition.EXIT)]
        if evaluation.transition == Transition.ENTER and evaluation.zone is not None:
            pairs: List[Tuple[Zone, Transition]] = []
            if previous_zone_id is not None:
                left = self.registry.get(previous_zone_id)
                if left is not None:
                    pairs.append((left, Transition.EXIT))
            pairs.append((evaluation.zone, Transition.ENTER))
            return pairs
        return []

    def _on_error(self, error: LocationError) -> None:
        self.last_error = error

    # ── Alert dispatch ──

    def _dispatch(self, record: AlertRecord, *, notify_admin: bool) -> None:
        task = asyncio.get_running_loop().create_task(
            self.relay.send(record, notify_admin=notify_admin)
        )
        self._pending.add(task)
        task.add_done_callback(self._on_send_done)

    def _on_send_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Zone alert send failed: %s", exc,
                extra={"subject_id": self.subject_id},
            )

    async def drain(self) -> List[RelayResult]:
        """Wait for every in-flight alert send."""
        if not self._pending:
            return []
        results = await asyncio.gather(*list(self._pending), return_exceptions=True)
        return [r for r in results if isinstance(r, RelayResult)]

    # ── Queries ──

    @property
    def last_known_location(self) -> Optional[Tuple[float, float]]:
        sample = self.watcher.last_sample
        if sample is None:
            return None
        return sample.latitude, sample.longitude

    def status(self, history_limit: int = 10) -> Dict[str, Any]:
        handle = self.watcher.handle
        history = self.watcher.history[-history_limit:] if history_limit else []
        return {
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "tracking": self.is_tracking,
            "options": handle.options.to_dict() if handle else None,
            "started_at": handle.started_at.isoformat() if handle else None,
            "membership": self.membership.to_dict(),
            "last_sample": (
                self.watcher.last_sample.to_dict() if self.watcher.last_sample else None
            ),
            "last_error": (
                {"code": self.last_error.code, "message": self.last_error.message}
                if self.last_error else None
            ),
            "history": [s.to_dict() for s in history],
            "recent_alerts": [a.to_dict() for a in self.recent_alerts],
            "preferences": self.preferences.to_dict(),
        }
