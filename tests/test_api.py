"""
test_api.py — HTTP surface (FastAPI TestClient, injected services).

Covers:
    • Zones listing / lookup
    • Tracking start → positions → status → stop
    • Emergency alerts online and offline, replay on reconnect
    • Panic countdown endpoints
    • Admin feed and acknowledgement
    • Health probes and error envelopes

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from backend.app.alerts.backends import AlertBackend
from backend.app.alerts.connectivity import ConnectivityMonitor
from backend.app.alerts.store import MemoryAlertStore
from backend.app.core.config import Settings
from backend.app.core.errors import ExternalServiceError
from backend.app.geofence.registry import ZoneRegistry
from backend.app.main import create_app
from backend.app.services import SafetyServices


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class SwitchableBackend(AlertBackend):
    name = "switchable"

    def __init__(self):
        self.down = False
        self.rows = []

    async def insert_alert(self, record, synced_at=None):
        if self.down:
            raise ExternalServiceError(self.name, "unreachable")
        self.rows.append((record.alert_id, synced_at))


@pytest.fixture
def backend():
    return SwitchableBackend()


@pytest.fixture
def services(backend):
    settings = Settings(
        OFFLINE_STORE="memory",
        PANIC_COUNTDOWN_SECONDS=0.05,
        REPLAY_INTERVAL_SECONDS=60.0,
        FALLBACK_LATITUDE=1.5,
        FALLBACK_LONGITUDE=2.5,
    )
    return SafetyServices(
        settings=settings,
        registry=ZoneRegistry.from_settings(None),
        store=MemoryAlertStore(settings.OFFLINE_QUEUE_MAX),
        backend=backend,
        connectivity=ConnectivityMonitor(initially_online=True),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as c:
        yield c


def _emergency(client, **overrides):
    body = {
        "subject_id": "T-001",
        "subject_name": "Priya",
        "category": "medical",
        "message": "Twisted ankle",
        "latitude": 11.030,
        "longitude": 76.992,
    }
    body.update(overrides)
    return client.post("/api/v1/alerts/emergency", json=body)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Zones
# ═══════════════════════════════════════════════════════════════════════════

class TestZonesAPI:

    def test_list(self, client):
        data = client.get("/api/v1/zones").json()
        assert data["count"] == 4
        assert {z["category"] for z in data["zones"]} == {
            "safe", "caution", "high_risk", "restricted",
        }

    def test_filter(self, client):
        data = client.get("/api/v1/zones", params={"category": "high_risk"}).json()
        assert [z["zone_id"] for z in data["zones"]] == ["cbe-crime-01"]

    def test_get_one(self, client):
        assert client.get("/api/v1/zones/cbe-crime-01").json()["radius_m"] == 220.0

    def test_unknown_zone(self, client):
        resp = client.get("/api/v1/zones/nowhere")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Tracking
# ═══════════════════════════════════════════════════════════════════════════

class TestTrackingAPI:

    def _start(self, client, subject_id="T-001"):
        return client.post(
            f"/api/v1/tracking/{subject_id}/start",
            json={"subject_name": "Priya", "timeout_ms": 0},
        )

    def test_start_uses_defaults(self, client):
        data = self._start(client).json()
        assert data["tracking"] is True
        assert data["options"]["timeout_ms"] == 0
        assert data["options"]["max_sample_age_ms"] == 30_000

    def test_start_twice_same_watch(self, client):
        first = self._start(client).json()
        second = self._start(client).json()
        assert first["watch_id"] == second["watch_id"]

    def test_enter_and_exit(self, client, backend):
        self._start(client)

        entered = client.post(
            "/api/v1/tracking/T-001/positions",
            json={"latitude": 11.030, "longitude": 76.992, "accuracy": 10},
        ).json()
        assert entered["processed"] is True
        assert entered["transition"] == "enter"
        assert entered["current_zone_id"] == "cbe-crime-01"
        assert entered["alerts"][0]["severity"] == "critical"
        assert entered["alerts"][0]["status"] == "delivered"

        left = client.post(
            "/api/v1/tracking/T-001/positions",
            json={"latitude": 11.050, "longitude": 76.992},
        ).json()
        assert left["transition"] == "exit"
        assert left["current_zone_id"] is None
        assert left["alerts"][0]["category"] == "zone_exit"

        assert len(backend.rows) == 2

    def test_position_without_session(self, client):
        resp = client.post(
            "/api/v1/tracking/ghost/positions",
            json={"latitude": 11.030, "longitude": 76.992},
        )
        assert resp.status_code == 404

    def test_position_after_stop_not_processed(self, client, backend):
        self._start(client)
        client.post("/api/v1/tracking/T-001/stop")
        data = client.post(
            "/api/v1/tracking/T-001/positions",
            json={"latitude": 11.030, "longitude": 76.992},
        ).json()
        assert data["processed"] is False
        assert backend.rows == []

    def test_stop_unknown_subject(self, client):
        resp = client.post("/api/v1/tracking/nobody/stop")
        assert resp.status_code == 200
        assert resp.json()["tracking"] is False

    def test_invalid_position(self, client):
        self._start(client)
        resp = client.post(
            "/api/v1/tracking/T-001/positions",
            json={"latitude": 95.0, "longitude": 76.992},
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["fields"][0]["field"] == "latitude"

    @pytest.mark.parametrize("code,error_code", [
        (1, "LOCATION_PERMISSION_DENIED"),
        (2, "LOCATION_UNAVAILABLE"),
        (3, "LOCATION_TIMEOUT"),
    ])
    def test_location_errors(self, client, code, error_code):
        self._start(client)
        data = client.post("/api/v1/tracking/T-001/errors", json={"code": code}).json()
        assert data["error_code"] == error_code

        status = client.get("/api/v1/tracking/T-001").json()
        assert status["last_error"]["code"] == code

    def test_unknown_error_code(self, client):
        self._start(client)
        resp = client.post("/api/v1/tracking/T-001/errors", json={"code": 9})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_status(self, client):
        self._start(client)
        for lat in (11.0300, 11.0301, 11.0302):
            client.post(
                "/api/v1/tracking/T-001/positions",
                json={"latitude": lat, "longitude": 76.992},
            )
        status = client.get("/api/v1/tracking/T-001", params={"history": 2}).json()
        assert status["subject_name"] == "Priya"
        assert status["membership"]["current_zone_id"] == "cbe-crime-01"
        assert [s["latitude"] for s in status["history"]] == [11.0301, 11.0302]

    def test_status_unknown(self, client):
        assert client.get("/api/v1/tracking/nobody").status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Alerts, offline queue, replay
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertsAPI:

    def test_emergency_delivered(self, client, backend):
        data = _emergency(client).json()
        assert data["delivered"] is True
        assert data["message"] == "alert sent"
        assert data["record"]["severity"] == "high"
        assert len(backend.rows) == 1

    def test_explicit_severity(self, client):
        data = _emergency(client, category="assistance", severity="critical").json()
        assert data["record"]["severity"] == "critical"

    def test_backend_down_queues(self, client, backend):
        backend.down = True
        resp = _emergency(client)
        assert resp.status_code == 200
        data = resp.json()
        assert data["delivered"] is False
        assert data["status"] == "queued_offline"
        assert data["message"] == "alert sent — will retry when back online"

        queue = client.get("/api/v1/alerts/offline").json()
        assert queue["count"] == 1
        assert queue["max"] == 50
        assert queue["records"][0]["offline"] is True

    def test_location_placeholder(self, client):
        data = _emergency(client, latitude=None, longitude=None).json()
        assert data["record"]["location"] == {"latitude": 1.5, "longitude": 2.5}

    def test_location_from_tracking(self, client):
        client.post("/api/v1/tracking/T-001/start", json={"timeout_ms": 0})
        client.post(
            "/api/v1/tracking/T-001/positions",
            json={"latitude": 11.1, "longitude": 77.0},
        )
        data = _emergency(client, latitude=None, longitude=None).json()
        assert data["record"]["location"] == {"latitude": 11.1, "longitude": 77.0}

    def test_offline_then_reconnect_replays(self, client, backend):
        assert client.post("/api/v1/alerts/network", json={"online": False}).json()["changed"]
        for _ in range(3):
            _emergency(client)
        assert backend.rows == []

        data = client.post("/api/v1/alerts/network", json={"online": True}).json()
        assert data["online"] is True
        assert data["queue_depth"] == 0
        assert len(backend.rows) == 3
        assert all(synced_at is not None for _, synced_at in backend.rows)

    def test_manual_replay(self, client, backend):
        backend.down = True
        _emergency(client)
        backend.down = False

        data = client.post("/api/v1/alerts/replay").json()
        assert data == {
            "attempted": 1, "delivered": 1, "failed": 0,
            "remaining": 0, "skipped_offline": False,
        }

    def test_replay_while_offline(self, client):
        client.post("/api/v1/alerts/network", json={"online": False})
        _emergency(client)
        data = client.post("/api/v1/alerts/replay").json()
        assert data["skipped_offline"] is True
        assert data["remaining"] == 1

    def test_missing_subject(self, client):
        resp = _emergency(client, subject_id="")
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["fields"][0]["field"] == "subject_id"

    def test_blank_subject(self, client, backend):
        resp = _emergency(client, subject_id="   ")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert backend.rows == []

    def test_zone_categories_not_user_selectable(self, client):
        assert _emergency(client, category="zone_entry").status_code == 422


class TestPanicAPI:

    def test_arm_and_fire(self, client, backend):
        data = client.post("/api/v1/alerts/panic/T-001", json={"subject_name": "Priya"}).json()
        assert data["armed"] is True
        assert data["countdown_seconds"] == 0.05

        time.sleep(0.3)
        state = client.get("/api/v1/alerts/panic/T-001").json()
        assert state["armed"] is False
        assert state["last_result"]["record"]["category"] == "panic"
        assert state["last_result"]["record"]["severity"] == "critical"
        assert len(backend.rows) == 1

    def test_cancel(self, client, services, backend):
        services.panic.seconds = 5.0
        client.post("/api/v1/alerts/panic/T-001")
        assert client.get("/api/v1/alerts/panic/T-001").json()["armed"] is True
        assert client.delete("/api/v1/alerts/panic/T-001").json()["cancelled"] is True
        assert client.delete("/api/v1/alerts/panic/T-001").json()["cancelled"] is False
        assert backend.rows == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Admin feed
# ═══════════════════════════════════════════════════════════════════════════

class TestAdminFeedAPI:

    def test_offline_alerts_appear(self, client, backend):
        backend.down = True
        alert_id = _emergency(client).json()["alert_id"]

        feed = client.get("/api/v1/admin/feed").json()
        assert feed["count"] == 1
        assert feed["offline_received"] == 1
        assert feed["entries"][0]["record"]["alert_id"] == alert_id
        assert feed["entries"][0]["source"] == "OFFLINE_ALERT"

    def test_high_risk_zone_entry_appears(self, client):
        client.post("/api/v1/tracking/T-001/start", json={"timeout_ms": 0})
        client.post(
            "/api/v1/tracking/T-001/positions",
            json={"latitude": 11.030, "longitude": 76.992},
        )
        feed = client.get("/api/v1/admin/feed").json()
        assert feed["entries"][0]["source"] == "GEOFENCE_ALERT"
        assert feed["entries"][0]["record"]["zone_id"] == "cbe-crime-01"

    def test_delivered_user_alert_not_in_feed(self, client):
        _emergency(client)
        assert client.get("/api/v1/admin/feed").json()["count"] == 0

    def test_acknowledge(self, client, backend):
        backend.down = True
        alert_id = _emergency(client).json()["alert_id"]

        data = client.post(f"/api/v1/admin/feed/{alert_id}/ack").json()
        assert data["acknowledged"] is True
        assert client.post("/api/v1/admin/feed/ALR-nope/ack").status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Health & root
# ═══════════════════════════════════════════════════════════════════════════

class TestHealthAPI:

    def test_root(self, client):
        assert client.get("/").json()["service"]

    def test_live(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_health_components(self, client):
        data = client.get("/health").json()
        names = {c["name"] for c in data["components"]}
        assert names == {"alert_backend", "connectivity", "offline_queue"}
        assert data["status"] == "healthy"

    def test_offline_is_degraded_but_ready(self, client):
        client.post("/api/v1/alerts/network", json={"online": False})
        resp = client.get("/health/ready")
        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"

    def test_request_id_header(self, client):
        resp = client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
