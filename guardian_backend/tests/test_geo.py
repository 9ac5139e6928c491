import pytest

from core.geo import LastKnownLocation, distance_between, haversine_m
from schemas.walk import SafeZone

from conftest import fix_at


def test_haversine_zero_for_same_point():
    assert haversine_m(33.7756, -84.3963, 33.7756, -84.3963) == 0.0


def test_haversine_one_degree_latitude():
    # ~111.2 km per degree along a meridian
    assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_195, rel=1e-3)


def test_distance_between_fixes_is_symmetric():
    a = fix_at(0, 33.7756, -84.3963)
    b = fix_at(5, 33.7766, -84.3950)
    assert distance_between(a, b) == pytest.approx(distance_between(b, a))
    assert 100 < distance_between(a, b) < 200


def test_safe_zone_contains_boundary():
    zone = SafeZone(latitude=33.7756, longitude=-84.3963, radius_meters=100)
    assert zone.contains(fix_at(0))
    # ~55 m north
    assert zone.contains(fix_at(0, lat=33.7761))
    # ~222 m north
    assert not zone.contains(fix_at(0, lat=33.7776))


def test_last_known_location_cell():
    cell = LastKnownLocation()
    assert cell.get() is None
    fix = fix_at(10)
    cell.set(fix)
    assert cell.get() is fix
    cell.clear()
    assert cell.get() is None
