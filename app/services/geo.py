"""
Great-circle distance helpers shared by the location store, the matching
engine and the routing fallback.
"""
from math import atan2, cos, radians, sin, sqrt
from typing import Any, Iterable, NamedTuple, Protocol, TypeVar

from app.exceptions import InvalidCoordinateError

EARTH_RADIUS_KM = 6371.0


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


T = TypeVar("T", bound=HasCoordinates)


class Nearby(NamedTuple):
    item: Any
    distance_km: float


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in km."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lon2 - lon1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * atan2(sqrt(a), sqrt(1 - a))


def nearest_within_radius(
    lat: float,
    lng: float,
    candidates: Iterable[T],
    max_radius_km: float,
) -> list[Nearby]:
    """Candidates within `max_radius_km` of (lat, lng), closest first."""
    annotated = [
        Nearby(c, distance_km(lat, lng, c.latitude, c.longitude)) for c in candidates
    ]
    within = [n for n in annotated if n.distance_km <= max_radius_km]
    within.sort(key=lambda n: n.distance_km)
    return within


def estimate_duration_seconds(distance_km_: float, speed_kph: float = 30.0) -> float:
    return distance_km_ / speed_kph * 3600


def is_valid_coordinate(lat: float, lng: float) -> bool:
    return -90 <= lat <= 90 and -180 <= lng <= 180


def validate_coordinates(lat: float, lng: float) -> None:
    # NaN fails every comparison, so it is rejected here too
    if not is_valid_coordinate(lat, lng):
        raise InvalidCoordinateError(lat, lng)
