"""
test_session.py — Per-subject tracking session (position → zones → alerts).

Covers:
    • Enter / exit alerts with category-dependent severity
    • Direct move A → B emits exit(A) then enter(B)
    • Alert preferences (category filter, disabled)
    • Admin-visible zones published on the local bus
    • Stop clears membership; fixes are ignored while not tracking
    • Location errors surface on the session

Run with:
    pytest tests/test_session.py -v
"""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from backend.app.alerts.backends import AlertBackend
from backend.app.alerts.bus import InMemoryBus
from backend.app.alerts.connectivity import ConnectivityMonitor
from backend.app.alerts.models import (
    AlertCategory,
    BusMessage,
    BusMessageType,
    DeliveryStatus,
    Severity,
)
from backend.app.alerts.relay import AlertRelay
from backend.app.alerts.store import MemoryAlertStore
from backend.app.core.errors import LocationPermissionDenied
from backend.app.geofence.models import Transition, Zone, ZoneCategory
from backend.app.geofence.registry import ZoneRegistry
from backend.app.geofence.session import AlertPreferences, GeofenceSession
from backend.app.tracking.models import PositionSample, TrackingOptions


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

MARKET = Zone("Z-market", "Market", 11.030, 76.992, 20.0, ZoneCategory.HIGH_RISK, "Pickpockets.")
BAZAAR = Zone("Z-bazaar", "Bazaar", 11.031, 76.992, 20.0, ZoneCategory.CAUTION, "Crowded.")
POLICE = Zone("Z-police", "Police Post", 11.040, 76.992, 20.0, ZoneCategory.SAFE)


class RecordingBackend(AlertBackend):
    name = "recording"

    def __init__(self):
        self.records = []

    async def insert_alert(self, record, synced_at=None):
        self.records.append(record)


def _fix(lat: float, lon: float = 76.992) -> PositionSample:
    return PositionSample(latitude=lat, longitude=lon, accuracy=5.0)


def _make_session(preferences: AlertPreferences = None, online: bool = True):
    backend = RecordingBackend()
    store = MemoryAlertStore()
    bus = InMemoryBus()
    messages: List[BusMessage] = []
    bus.subscribe(messages.append)
    relay = AlertRelay(
        backend=backend,
        store=store,
        bus=bus,
        connectivity=ConnectivityMonitor(initially_online=online),
    )
    session = GeofenceSession(
        "T-001",
        ZoneRegistry([MARKET, BAZAAR, POLICE]),
        relay,
        preferences=preferences,
        subject_name="Priya",
    )
    return session, backend, store, messages


def _run(session, lats):
    """Start tracking, feed fixes, wait for sends; returns the outcomes."""
    async def scenario():
        session.start(TrackingOptions(timeout_ms=0))
        outcomes = [session.push_fix(_fix(lat)) for lat in lats]
        await session.drain()
        return outcomes

    return asyncio.run(scenario())


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Transitions → alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestZoneAlerts:

    def test_enter_then_exit(self):
        session, backend, _, _ = _make_session()
        entered, left = _run(session, [11.030, 11.035])

        assert entered.evaluation.transition == Transition.ENTER
        assert [a.category for a in entered.alerts] == [AlertCategory.ZONE_ENTRY]
        assert entered.alerts[0].severity == Severity.CRITICAL
        assert entered.alerts[0].zone_id == "Z-market"

        assert left.evaluation.transition == Transition.EXIT
        assert [a.category for a in left.alerts] == [AlertCategory.ZONE_EXIT]
        assert left.alerts[0].severity == Severity.HIGH

        assert [r.category for r in backend.records] == [
            AlertCategory.ZONE_ENTRY, AlertCategory.ZONE_EXIT,
        ]
        assert all(r.status == DeliveryStatus.DELIVERED for r in backend.records)
        assert session.membership.current_zone_id is None

    def test_staying_inside_is_silent(self):
        session, backend, _, _ = _make_session()
        outcomes = _run(session, [11.030, 11.03001, 11.03002])
        assert [len(o.alerts) for o in outcomes] == [1, 0, 0]
        assert len(backend.records) == 1

    def test_direct_move_exits_then_enters(self):
        session, backend, _, _ = _make_session()
        _, moved = _run(session, [11.030, 11.031])

        assert [(a.category, a.zone_id) for a in moved.alerts] == [
            (AlertCategory.ZONE_EXIT, "Z-market"),
            (AlertCategory.ZONE_ENTRY, "Z-bazaar"),
        ]
        assert moved.alerts[1].severity == Severity.MEDIUM
        assert session.membership.current_zone_id == "Z-bazaar"

    def test_alert_uses_sample_location_and_subject(self):
        session, _, _, _ = _make_session()
        (entered,) = _run(session, [11.030])
        alert = entered.alerts[0]
        assert (alert.latitude, alert.longitude) == (11.030, 76.992)
        assert alert.subject_id == "T-001"
        assert alert.subject_name == "Priya"
        assert alert.message.startswith("You have entered Market.")

    def test_admin_visible_zones_published(self):
        session, _, _, messages = _make_session()
        _run(session, [11.030, 11.031])
        published = [(m.type, m.record.zone_id, m.record.category) for m in messages]
        # Bazaar is a caution zone: delivered, but not pushed to admins
        assert published == [
            (BusMessageType.GEOFENCE_ALERT, "Z-market", AlertCategory.ZONE_ENTRY),
            (BusMessageType.GEOFENCE_ALERT, "Z-market", AlertCategory.ZONE_EXIT),
        ]

    def test_offline_alerts_queued(self):
        session, backend, store, messages = _make_session(online=False)
        _run(session, [11.030])
        assert backend.records == []
        assert asyncio.run(store.count()) == 1
        assert messages[0].type == BusMessageType.OFFLINE_ALERT


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Preferences
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertPreferences:

    def test_safe_zones_silent_by_default(self):
        session, backend, _, _ = _make_session()
        (outcome,) = _run(session, [11.040])
        assert outcome.evaluation.transition == Transition.ENTER
        assert outcome.alerts == []
        assert backend.records == []
        assert session.membership.current_zone_id == "Z-police"

    def test_disabled_tracks_membership_only(self):
        session, backend, _, _ = _make_session(AlertPreferences(enabled=False))
        _run(session, [11.030, 11.031])
        assert backend.records == []
        assert session.membership.current_zone_id == "Z-bazaar"

    def test_category_filter(self):
        prefs = AlertPreferences.from_values(True, ["caution"])
        session, backend, _, _ = _make_session(prefs)
        _run(session, [11.030, 11.031])
        assert [r.zone_id for r in backend.records] == ["Z-bazaar"]

    def test_from_values_rejects_unknown(self):
        with pytest.raises(ValueError):
            AlertPreferences.from_values(True, ["volcano"])

    def test_to_dict(self):
        d = AlertPreferences().to_dict()
        assert d == {
            "enabled": True,
            "notify_categories": ["caution", "high_risk", "restricted"],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestSessionLifecycle:

    def test_fix_ignored_when_not_tracking(self):
        session, backend, _, _ = _make_session()
        assert session.push_fix(_fix(11.030)) is None
        assert backend.records == []
        assert session.membership.current_zone_id is None

    def test_stop_clears_membership(self):
        session, _, _, _ = _make_session()
        _run(session, [11.030])
        assert session.membership.current_zone_id == "Z-market"

        session.stop()
        assert not session.is_tracking
        assert session.membership.current_zone_id is None

    def test_restart_reenters(self):
        session, backend, _, _ = _make_session()
        _run(session, [11.030])
        session.stop()

        async def restart():
            session.start(TrackingOptions(timeout_ms=0, max_sample_age_ms=0))
            outcome = session.push_fix(_fix(11.030))
            await session.drain()
            return outcome

        outcome = asyncio.run(restart())
        assert outcome.evaluation.transition == Transition.ENTER
        assert len(backend.records) == 2

    def test_location_error_recorded(self):
        session, _, _, _ = _make_session()
        session.start(TrackingOptions(timeout_ms=0))
        session.push_error(LocationPermissionDenied())
        assert session.last_error is not None
        assert session.last_error.code == 1

        status = session.status()
        assert status["last_error"]["code"] == 1

    def test_next_fix_clears_error(self):
        session, _, _, _ = _make_session()

        async def scenario():
            session.start(TrackingOptions(timeout_ms=0))
            session.push_error(LocationPermissionDenied())
            session.push_fix(_fix(11.050))

        asyncio.run(scenario())
        assert session.last_error is None

    def test_status(self):
        session, _, _, _ = _make_session()
        _run(session, [11.030, 11.0301])
        status = session.status(history_limit=1)
        assert status["tracking"] is True
        assert status["subject_name"] == "Priya"
        assert status["membership"]["current_zone_id"] == "Z-market"
        assert status["membership"]["samples_evaluated"] == 2
        assert len(status["history"]) == 1
        assert status["history"][0]["latitude"] == 11.0301
        assert len(status["recent_alerts"]) == 1
        assert session.last_known_location == (11.0301, 76.992)

    def test_drain_without_pending(self):
        session, _, _, _ = _make_session()
        assert asyncio.run(session.drain()) == []
