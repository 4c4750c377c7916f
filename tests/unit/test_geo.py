"""
Unit tests for the great-circle distance helpers.
"""
import math
from dataclasses import dataclass

import pytest

from app.exceptions import InvalidCoordinateError
from app.services.geo import (
    distance_km,
    estimate_duration_seconds,
    nearest_within_radius,
    validate_coordinates,
)

NAIROBI_CBD = (-1.2921, 36.8219)
WESTLANDS = (-1.3183, 36.8169)


@dataclass
class Point:
    name: str
    latitude: float
    longitude: float


class TestDistance:
    @pytest.mark.parametrize("point", [NAIROBI_CBD, WESTLANDS, (0.0, 0.0), (89.9, -179.9)])
    def test_zero_for_identical_points(self, point):
        assert distance_km(*point, *point) == 0

    def test_symmetric(self):
        assert distance_km(*NAIROBI_CBD, *WESTLANDS) == pytest.approx(distance_km(*WESTLANDS, *NAIROBI_CBD))

    def test_nairobi_cbd_to_westlands(self):
        assert 2.9 <= distance_km(*NAIROBI_CBD, *WESTLANDS) <= 3.1

    def test_one_degree_of_latitude(self):
        assert distance_km(0, 0, 1, 0) == pytest.approx(111.195, abs=0.01)


class TestNearestWithinRadius:
    def test_filters_and_sorts_ascending(self):
        candidates = [
            Point("far", -1.2921 + 0.05, 36.8219),     # ~5.6 km
            Point("near", -1.2921 + 0.005, 36.8219),   # ~0.56 km
            Point("mid", -1.2921 + 0.02, 36.8219),     # ~2.2 km
        ]
        result = nearest_within_radius(*NAIROBI_CBD, candidates, max_radius_km=3)
        assert [n.item.name for n in result] == ["near", "mid"]
        assert result[0].distance_km < result[1].distance_km

    def test_radius_is_inclusive(self):
        target = Point("edge", 1.0, 0.0)
        radius = distance_km(0, 0, 1.0, 0.0)
        assert nearest_within_radius(0, 0, [target], radius)[0].item is target

    def test_empty_candidates(self):
        assert nearest_within_radius(*NAIROBI_CBD, [], 25) == []


class TestDurationAndValidation:
    def test_duration_at_default_speed(self):
        # 30 km at 30 km/h is one hour
        assert estimate_duration_seconds(30) == 3600

    def test_duration_custom_speed(self):
        assert estimate_duration_seconds(10, speed_kph=60) == 600

    @pytest.mark.parametrize("lat,lng", [(-90, -180), (90, 180), (0, 0), (-1.2921, 36.8219)])
    def test_valid_coordinates(self, lat, lng):
        validate_coordinates(lat, lng)

    @pytest.mark.parametrize("lat,lng", [(90.1, 0), (-91, 0), (0, 180.5), (0, -181), (math.nan, 0)])
    def test_invalid_coordinates(self, lat, lng):
        with pytest.raises(InvalidCoordinateError):
            validate_coordinates(lat, lng)
