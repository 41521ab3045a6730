"""
Bearing and detour geometry for homeward matching.

Pure functions, no I/O. A candidate ride is compared against the course a
driver is already holding toward their destination: the legs driver ->
pickup, pickup -> dropoff and dropoff -> destination should all point
roughly the same way, and the extra distance they add to the direct route
must stay under the driver's detour limit.
"""
from __future__ import annotations

from dataclasses import dataclass
from math import atan2, cos, degrees, floor, radians, sin, sqrt

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    @classmethod
    def of(cls, lat, lng) -> LatLng:
        return cls(float(lat), float(lng))

    def to_dict(self):
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class DirectionCompatibility:
    is_compatible: bool
    angle_deviation: float
    detour_percent: float
    direction_score: float


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------

def calculate_bearing(origin: LatLng, target: LatLng) -> float:
    """Initial great-circle bearing from ``origin`` to ``target``, in [0, 360)."""
    lat1 = radians(origin.lat)
    lat2 = radians(target.lat)
    dlng = radians(target.lng - origin.lng)

    y = sin(dlng) * cos(lat2)
    x = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(dlng)

    return (degrees(atan2(y, x)) + 360.0) % 360.0


def calculate_distance(origin: LatLng, target: LatLng) -> float:
    """Return the great-circle distance in km between two points."""
    dlat = radians(target.lat - origin.lat)
    dlng = radians(target.lng - origin.lng)

    a = (sin(dlat / 2) ** 2
         + cos(radians(origin.lat)) * cos(radians(target.lat)) * sin(dlng / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * atan2(sqrt(a), sqrt(1 - a))


def angle_difference(first: float, second: float) -> float:
    """Smallest absolute difference between two bearings, in [0, 180]."""
    diff = abs(first - second) % 360.0
    if diff > 180.0:
        diff = 360.0 - diff
    return diff


# ---------------------------------------------------------------------------
# Compatibility
# ---------------------------------------------------------------------------

def check_direction_compatibility(
    driver_location: LatLng,
    destination: LatLng,
    pickup: LatLng,
    dropoff: LatLng,
    max_angle_deviation: float = 30.0,
    max_detour_percent: float = 15.0,
) -> DirectionCompatibility:
    """Score how well a ride fits a driver's course home.

    The angular deviation of each leg from the driver's home bearing is
    averaged, and the detour is the relative extra distance of
    driver -> pickup -> dropoff -> destination over driver -> destination.
    A driver already at their destination has no course to deviate from,
    so the detour is reported as 0.
    """
    home_bearing = calculate_bearing(driver_location, destination)

    pickup_deviation = angle_difference(home_bearing, calculate_bearing(driver_location, pickup))
    ride_deviation = angle_difference(home_bearing, calculate_bearing(pickup, dropoff))
    dropoff_deviation = angle_difference(home_bearing, calculate_bearing(dropoff, destination))
    avg_deviation = (pickup_deviation + ride_deviation + dropoff_deviation) / 3

    direct_distance = calculate_distance(driver_location, destination)
    detour_distance = (
        calculate_distance(driver_location, pickup)
        + calculate_distance(pickup, dropoff)
        + calculate_distance(dropoff, destination)
    )
    if direct_distance > 0:
        detour_percent = (detour_distance - direct_distance) / direct_distance * 100
    else:
        detour_percent = 0.0

    is_compatible = avg_deviation <= max_angle_deviation and detour_percent <= max_detour_percent

    score = 100.0
    score -= (avg_deviation / max_angle_deviation) * 50 if max_angle_deviation > 0 else 50
    score -= (detour_percent / max_detour_percent) * 50 if max_detour_percent > 0 else 50
    score = min(100.0, max(0.0, score))

    return DirectionCompatibility(
        is_compatible=is_compatible,
        angle_deviation=avg_deviation,
        detour_percent=detour_percent,
        direction_score=score,
    )


def estimate_arrival_minutes(distance_km: float, speed_kmh: float = 30.0) -> int:
    """Minutes to cover ``distance_km`` at a flat effective urban speed."""
    return int(floor(distance_km / speed_kmh * 60 + 0.5))
