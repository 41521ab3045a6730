"""
Geometry tests: bearings, distances and direction compatibility
"""
import pytest

from homeward.geo import (
    LatLng,
    angle_difference,
    calculate_bearing,
    calculate_distance,
    check_direction_compatibility,
    estimate_arrival_minutes,
)
from tests.conftest import HOME, ORIGIN, offset


class TestPrimitives:

    def test_bearing_due_north_and_east(self):
        assert calculate_bearing(LatLng(0, 0), LatLng(1, 0)) == pytest.approx(0.0, abs=1e-9)
        assert calculate_bearing(LatLng(0, 0), LatLng(0, 1)) == pytest.approx(90.0)

    def test_bearing_is_normalised(self):
        bearing = calculate_bearing(LatLng(0, 0), LatLng(0, -1))
        assert bearing == pytest.approx(270.0)
        assert 0 <= bearing < 360

    def test_distance_one_degree_of_latitude(self):
        assert calculate_distance(LatLng(0, 0), LatLng(1, 0)) == pytest.approx(111.195, rel=1e-3)

    def test_distance_same_point_is_zero(self):
        assert calculate_distance(ORIGIN, ORIGIN) == 0

    def test_angle_difference_wraps(self):
        assert angle_difference(350, 10) == pytest.approx(20)
        assert angle_difference(10, 350) == pytest.approx(20)
        assert angle_difference(0, 180) == pytest.approx(180)

    def test_arrival_minutes_rounds_half_up(self):
        assert estimate_arrival_minutes(10) == 20
        assert estimate_arrival_minutes(0.25) == 1
        assert estimate_arrival_minutes(0.2) == 0
        assert estimate_arrival_minutes(10, speed_kmh=60) == 10


class TestDirectionCompatibility:

    def test_ride_along_the_way_home_is_compatible(self):
        pickup = offset(ORIGIN, 1, 5)
        dropoff = offset(pickup, 8, 2)

        result = check_direction_compatibility(ORIGIN, HOME, pickup, dropoff)

        assert result.is_compatible
        assert result.angle_deviation < 30
        assert 0 <= result.detour_percent < 15
        assert result.direction_score > 75

    def test_ride_in_the_opposite_direction_is_rejected(self):
        pickup = offset(ORIGIN, 1, 5)
        dropoff = offset(pickup, 8, 180)

        result = check_direction_compatibility(ORIGIN, HOME, pickup, dropoff)

        assert not result.is_compatible
        assert result.angle_deviation > 30 or result.detour_percent > 15

    def test_detour_limit_is_respected(self):
        # Straight ahead but with a sideways dogleg adding distance
        pickup = offset(ORIGIN, 3, 20)
        dropoff = offset(ORIGIN, 7, 340)

        loose = check_direction_compatibility(ORIGIN, HOME, pickup, dropoff, max_detour_percent=50)
        tight = check_direction_compatibility(ORIGIN, HOME, pickup, dropoff, max_detour_percent=1)

        assert loose.detour_percent == tight.detour_percent
        assert loose.detour_percent > 1
        assert not tight.is_compatible

    def test_driver_at_destination_has_zero_detour(self):
        pickup = offset(HOME, 1, 90)
        result = check_direction_compatibility(HOME, HOME, pickup, offset(pickup, 1, 90))
        assert result.detour_percent == 0.0

    @pytest.mark.parametrize('pickup_bearing,dropoff_bearing', [
        (0, 0), (45, 90), (90, 270), (180, 180), (270, 10),
    ])
    def test_score_stays_within_bounds(self, pickup_bearing, dropoff_bearing):
        pickup = offset(ORIGIN, 4, pickup_bearing)
        dropoff = offset(pickup, 30, dropoff_bearing)

        result = check_direction_compatibility(ORIGIN, HOME, pickup, dropoff)

        assert 0 <= result.direction_score <= 100
        assert result.detour_percent >= -100
