"""
Tests for fleet_tracker/services/geodesy.py

Tests cover:
- Haversine distance (metric properties, known distances)
- Point-to-segment distance (projection clamp, degenerate segment)
"""

import math

import pytest

from fleet_tracker.exceptions import InvalidInputError
from fleet_tracker.models import Position
from fleet_tracker.services.geodesy import (
    EARTH_RADIUS_M,
    distance,
    point_to_segment_distance,
)
from tests.fixtures.fleet_fixtures import METERS_PER_DEG_LAT

SF = Position(37.7749, -122.4194)
OAKLAND = Position(37.8044, -122.2712)
LA = Position(34.0522, -118.2437)


# ═══════════════════════════════════════════════════════════════════════════════
# DISTANCE
# ═══════════════════════════════════════════════════════════════════════════════


class TestDistance:
    """Haversine great-circle distance"""

    def test_earth_radius(self):
        assert EARTH_RADIUS_M == 6371000.0

    def test_same_point_is_zero(self):
        assert distance(SF, SF) == 0.0

    def test_symmetric(self):
        assert distance(SF, LA) == pytest.approx(distance(LA, SF))

    def test_non_negative(self):
        assert distance(OAKLAND, SF) > 0

    def test_triangle_inequality(self):
        assert distance(SF, LA) <= distance(SF, OAKLAND) + distance(OAKLAND, LA) + 1e-6

    def test_one_degree_latitude(self):
        d = distance(Position(0.0, 0.0), Position(1.0, 0.0))
        assert d == pytest.approx(METERS_PER_DEG_LAT, rel=1e-9)

    def test_sf_to_la_known_distance(self):
        """SF to LA is roughly 559 km"""
        assert distance(SF, LA) / 1000 == pytest.approx(559, abs=5)

    def test_antipodal_points(self):
        d = distance(Position(0.0, 0.0), Position(0.0, 180.0))
        assert d == pytest.approx(math.pi * EARTH_RADIUS_M, rel=1e-9)

    def test_invalid_position_rejected(self):
        with pytest.raises(InvalidInputError):
            Position(91.0, 0.0)
        with pytest.raises(InvalidInputError):
            Position(0.0, -181.0)


# ═══════════════════════════════════════════════════════════════════════════════
# POINT TO SEGMENT
# ═══════════════════════════════════════════════════════════════════════════════


class TestPointToSegmentDistance:
    """Projection in degree space, clamped to the segment"""

    A = Position(37.77, -122.42)
    B = Position(37.78, -122.43)

    def test_point_on_segment_is_zero(self):
        midpoint = Position(37.775, -122.425)
        assert point_to_segment_distance(midpoint, self.A, self.B) == pytest.approx(0.0, abs=1e-6)

    def test_projection_clamped_to_start(self):
        before_start = Position(37.76, -122.41)
        assert point_to_segment_distance(before_start, self.A, self.B) == pytest.approx(
            distance(before_start, self.A)
        )

    def test_projection_clamped_to_end(self):
        past_end = Position(37.79, -122.44)
        assert point_to_segment_distance(past_end, self.A, self.B) == pytest.approx(
            distance(past_end, self.B)
        )

    def test_degenerate_segment_uses_start(self):
        p = Position(37.80, -122.40)
        assert point_to_segment_distance(p, self.A, self.A) == pytest.approx(distance(p, self.A))

    def test_never_more_than_endpoint_distance(self):
        p = Position(37.90, -122.50)
        d = point_to_segment_distance(p, self.A, self.B)
        assert d <= min(distance(p, self.A), distance(p, self.B)) + 1e-6

    def test_perpendicular_offset_on_meridian(self):
        """Segment along a meridian: offset is the longitude difference"""
        a = Position(0.0, 0.0)
        b = Position(1.0, 0.0)
        p = Position(0.5, 0.001)
        expected = distance(p, Position(0.5, 0.0))
        assert point_to_segment_distance(p, a, b) == pytest.approx(expected)
