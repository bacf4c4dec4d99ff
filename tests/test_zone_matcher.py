"""
test_zone_matcher.py — Zone models, pure zone matching and the zone registry.

Covers:
    • Zone / ZoneEvaluation / ZoneMembership data structures
    • Membership iff haversine distance ≤ radius
    • Edge-triggered enter, enter/exit pairing, zone-to-zone moves
    • Deterministic overlap resolution
    • Configuration errors (duplicate ids, unknown previous zone)
    • Zone registry loading from JSON

Run with:
    pytest tests/test_zone_matcher.py -v
"""

from __future__ import annotations

import json
import random

import pytest

from backend.app.core.errors import ZoneConfigurationError
from backend.app.geofence.matcher import evaluate, select_zone, zones_containing
from backend.app.geofence.models import (
    Transition,
    Zone,
    ZoneCategory,
    ZoneEvaluation,
    ZoneMembership,
)
from backend.app.geofence.registry import DEFAULT_ZONES, ZoneRegistry, load_zones
from backend.app.spatial.geodesy import Coordinate, haversine_m
from backend.app.tracking.models import PositionSample


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

MARKET_LAT = 11.030
MARKET_LON = 76.992


def _make_zone(
    zone_id: str = "Z1",
    lat: float = MARKET_LAT,
    lon: float = MARKET_LON,
    radius_m: float = 20.0,
    category: ZoneCategory = ZoneCategory.HIGH_RISK,
    name: str = "Market",
) -> Zone:
    return Zone(
        zone_id=zone_id,
        name=name,
        latitude=lat,
        longitude=lon,
        radius_m=radius_m,
        category=category,
        description="Pickpocketing reported.",
    )


def _make_sample(lat: float = MARKET_LAT, lon: float = MARKET_LON) -> PositionSample:
    return PositionSample(latitude=lat, longitude=lon, accuracy=5.0)


def _run(samples, zones):
    """Feed samples through evaluate() the way a session does."""
    previous = None
    transitions = []
    for sample in samples:
        result = evaluate(sample, zones, previous)
        transitions.append(result.transition)
        previous = result.current_zone_id
    return transitions


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Data Model Tests
# ═══════════════════════════════════════════════════════════════════════════

class TestZone:

    def test_string_category_coerced(self):
        zone = Zone("Z1", "Market", MARKET_LAT, MARKET_LON, 20.0, "restricted")
        assert zone.category is ZoneCategory.RESTRICTED

    @pytest.mark.parametrize("radius", [0.0, -1.0])
    def test_radius_must_be_positive(self, radius):
        with pytest.raises(ValueError):
            _make_zone(radius_m=radius)

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            _make_zone(zone_id="")

    def test_bad_center_rejected(self):
        with pytest.raises(ValueError):
            _make_zone(lat=95.0)

    def test_to_dict(self):
        d = _make_zone().to_dict()
        assert d["zone_id"] == "Z1"
        assert d["center"] == {"latitude": MARKET_LAT, "longitude": MARKET_LON}
        assert d["category"] == "high_risk"


class TestZoneMembership:

    def test_apply_tracks_entry_time(self):
        zone = _make_zone()
        membership = ZoneMembership("T-001")
        membership.apply(ZoneEvaluation("Z1", Transition.ENTER, zone, 0.0))
        assert membership.current_zone_id == "Z1"
        assert membership.entered_at is not None
        assert membership.samples_evaluated == 1

        entered = membership.entered_at
        membership.apply(ZoneEvaluation("Z1", Transition.NONE, zone, 1.0))
        assert membership.entered_at == entered

        membership.apply(ZoneEvaluation(None, Transition.EXIT, zone))
        assert membership.current_zone_id is None
        assert membership.entered_at is None

    def test_clear(self):
        membership = ZoneMembership("T-001", current_zone_id="Z1", samples_evaluated=4)
        membership.clear()
        assert membership.current_zone_id is None
        assert membership.samples_evaluated == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Membership
# ═══════════════════════════════════════════════════════════════════════════

class TestMembershipByDistance:

    @pytest.mark.parametrize("lat,lon,radius,inside", [
        (11.030, 76.992, 20.0, True),      # center
        (11.0301, 76.992, 20.0, True),     # ~11 m north
        (11.0302, 76.992, 20.0, False),    # ~22 m north
        (11.035, 76.992, 20.0, False),     # ~556 m north
        (11.035, 76.992, 556.0, True),     # just inside a 556 m circle
        (11.035, 76.992, 555.9, False),
        (11.030, 76.9922, 25.0, True),     # ~22 m east
    ])
    def test_inside_iff_distance_within_radius(self, lat, lon, radius, inside):
        zone = _make_zone(radius_m=radius)
        sample = _make_sample(lat, lon)
        dist = haversine_m(sample.coordinate, zone.center)
        assert (dist <= radius) is inside
        assert bool(zones_containing(sample, [zone])) is inside

    def test_random_points_agree_with_haversine(self):
        rng = random.Random(42)
        zone = _make_zone(radius_m=150.0)
        for _ in range(200):
            sample = _make_sample(
                MARKET_LAT + rng.uniform(-0.003, 0.003),
                MARKET_LON + rng.uniform(-0.003, 0.003),
            )
            expected = haversine_m(sample.coordinate, zone.center) <= zone.radius_m
            assert bool(zones_containing(sample, [zone])) is expected

    @pytest.mark.parametrize("zone_lon,sample_lon", [
        (179.9995, -179.9995),
        (-179.9995, 179.9995),
    ])
    def test_zone_across_antimeridian(self, zone_lon, sample_lon):
        zone = _make_zone("FJ", lat=0.0, lon=zone_lon, radius_m=200.0)
        result = evaluate(_make_sample(0.0, sample_lon), [zone], None)
        assert result.current_zone_id == "FJ"
        assert result.transition == Transition.ENTER
        assert result.distance_m == pytest.approx(111.2, abs=0.5)

    @pytest.mark.parametrize("zone_lat,sample_lat,sample_lon", [
        (89.99, 89.995, 180.0),
        (89.99, 89.999, -90.0),
        (-89.99, -89.995, 180.0),
    ])
    def test_zone_containing_a_pole(self, zone_lat, sample_lat, sample_lon):
        zone = _make_zone("NP", lat=zone_lat, lon=0.0, radius_m=2000.0)
        sample = _make_sample(sample_lat, sample_lon)
        assert haversine_m(sample.coordinate, zone.center) <= zone.radius_m
        assert evaluate(sample, [zone], None).current_zone_id == "NP"

    def test_random_points_near_pole_agree_with_haversine(self):
        rng = random.Random(7)
        zone = _make_zone("NP", lat=89.99, lon=0.0, radius_m=2000.0)
        for _ in range(200):
            sample = _make_sample(rng.uniform(89.97, 90.0), rng.uniform(-180.0, 180.0))
            expected = haversine_m(sample.coordinate, zone.center) <= zone.radius_m
            assert bool(zones_containing(sample, [zone])) is expected

    def test_distance_reported(self):
        zone = _make_zone(radius_m=50.0)
        result = evaluate(_make_sample(11.0301, MARKET_LON), [zone], None)
        assert result.distance_m == pytest.approx(11.1, abs=0.2)


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Transitions
# ═══════════════════════════════════════════════════════════════════════════

class TestTransitions:

    def test_outside_everything_is_none(self):
        result = evaluate(_make_sample(11.1, 77.1), [_make_zone()], None)
        assert result.transition == Transition.NONE
        assert result.current_zone_id is None
        assert result.zone is None

    def test_enter_is_edge_triggered(self):
        zone = _make_zone()
        inside = [_make_sample() for _ in range(5)]
        transitions = _run(inside, [zone])
        assert transitions == [Transition.ENTER] + [Transition.NONE] * 4

    def test_staying_reports_current_zone(self):
        zone = _make_zone()
        result = evaluate(_make_sample(), [zone], "Z1")
        assert result.transition == Transition.NONE
        assert result.current_zone_id == "Z1"
        assert result.zone == zone

    def test_exit_reports_zone_left(self):
        zone = _make_zone()
        result = evaluate(_make_sample(11.035, MARKET_LON), [zone], "Z1")
        assert result.transition == Transition.EXIT
        assert result.current_zone_id is None
        assert result.zone == zone

    def test_enter_exit_pairing(self):
        zone = _make_zone()
        pattern = [True, True, False, False, True, False, True, True, True, False]
        samples = [
            _make_sample() if inside else _make_sample(11.035, MARKET_LON)
            for inside in pattern
        ]
        transitions = _run(samples, [zone])
        enters = transitions.count(Transition.ENTER)
        exits = transitions.count(Transition.EXIT)
        assert enters == 3
        assert exits == 3

        # Every exit follows an unmatched enter
        open_enter = False
        for t in transitions:
            if t == Transition.ENTER:
                assert not open_enter
                open_enter = True
            elif t == Transition.EXIT:
                assert open_enter
                open_enter = False

    def test_market_scenario(self):
        zone = _make_zone(radius_m=20.0, category=ZoneCategory.HIGH_RISK)
        transitions = _run(
            [_make_sample(11.030, 76.992), _make_sample(11.035, 76.992)], [zone],
        )
        assert transitions == [Transition.ENTER, Transition.EXIT]

    def test_direct_move_between_zones_enters_new_zone(self):
        a = _make_zone("A", lat=11.030, radius_m=30.0)
        b = _make_zone("B", lat=11.031, radius_m=30.0)
        result = evaluate(_make_sample(11.031, MARKET_LON), [a, b], "A")
        assert result.transition == Transition.ENTER
        assert result.current_zone_id == "B"
        assert result.zone == b


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Overlaps
# ═══════════════════════════════════════════════════════════════════════════

class TestOverlaps:

    def test_smallest_radius_wins(self):
        big = _make_zone("big", radius_m=200.0)
        small = _make_zone("small", radius_m=50.0)
        for zones in ([big, small], [small, big]):
            result = evaluate(_make_sample(), zones, None)
            assert result.current_zone_id == "small"

    def test_equal_radius_lowest_id_wins(self):
        z_b = _make_zone("b-zone", radius_m=100.0)
        z_a = _make_zone("a-zone", radius_m=100.0)
        assert evaluate(_make_sample(), [z_b, z_a], None).current_zone_id == "a-zone"
        assert evaluate(_make_sample(), [z_a, z_b], None).current_zone_id == "a-zone"

    def test_select_zone_empty(self):
        assert select_zone([]) is None

    def test_moving_into_smaller_nested_zone_enters_it(self):
        outer = _make_zone("outer", radius_m=500.0)
        inner = _make_zone("inner", radius_m=20.0)
        result = evaluate(_make_sample(), [outer, inner], "outer")
        assert result.transition == Transition.ENTER
        assert result.current_zone_id == "inner"


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Configuration Errors
# ═══════════════════════════════════════════════════════════════════════════

class TestConfigurationErrors:

    def test_duplicate_ids(self):
        with pytest.raises(ZoneConfigurationError):
            evaluate(_make_sample(), [_make_zone("Z1"), _make_zone("Z1")], None)

    def test_unknown_previous_zone(self):
        with pytest.raises(ZoneConfigurationError) as exc:
            evaluate(_make_sample(), [_make_zone("Z1")], "gone")
        assert exc.value.details["zone_id"] == "gone"

    def test_empty_zone_list(self):
        result = evaluate(_make_sample(), [], None)
        assert result.transition == Transition.NONE


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Registry
# ═══════════════════════════════════════════════════════════════════════════

class TestZoneRegistry:

    def test_default_zones(self):
        registry = ZoneRegistry.from_settings(None)
        assert len(registry) == len(DEFAULT_ZONES)
        assert registry.get("cbe-crime-01").category == ZoneCategory.HIGH_RISK
        assert registry.get("missing") is None

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "zones.json"
        path.write_text(json.dumps([
            {"zone_id": "a", "name": "A", "latitude": 11.0, "longitude": 77.0,
             "radius_m": 100, "category": "caution"},
            {"zone_id": "b", "latitude": 11.1, "longitude": 77.1, "radius_m": 50},
        ]))
        registry = ZoneRegistry.from_settings(str(path))
        assert [z.zone_id for z in registry] == ["a", "b"]
        assert registry.get("b").name == "b"
        assert registry.get("b").category == ZoneCategory.CAUTION

    def test_duplicate_ids_in_file(self, tmp_path):
        path = tmp_path / "zones.json"
        entry = {"zone_id": "a", "latitude": 11.0, "longitude": 77.0, "radius_m": 10}
        path.write_text(json.dumps([entry, entry]))
        with pytest.raises(ZoneConfigurationError):
            ZoneRegistry.from_settings(str(path))

    @pytest.mark.parametrize("content", [
        "not json",
        json.dumps({"zone_id": "a"}),
        json.dumps([{"zone_id": "a", "latitude": 11.0, "longitude": 77.0}]),
        json.dumps([{"zone_id": "a", "latitude": 11.0, "longitude": 77.0,
                     "radius_m": -3}]),
        json.dumps([{"zone_id": "a", "latitude": 11.0, "longitude": 77.0,
                     "radius_m": 10, "category": "volcano"}]),
    ])
    def test_malformed_files(self, tmp_path, content):
        path = tmp_path / "zones.json"
        path.write_text(content)
        with pytest.raises(ZoneConfigurationError):
            load_zones(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ZoneConfigurationError):
            load_zones(tmp_path / "nope.json")

    def test_coordinate_helper_matches_zone_center(self):
        zone = DEFAULT_ZONES[0]
        assert zone.center == Coordinate(zone.latitude, zone.longitude)
