"""
Geodesy primitives

- distance(): great-circle distance (haversine), Earth radius 6,371,000 m
- point_to_segment_distance(): distance from a point to a route segment

Known limitation: point_to_segment_distance() computes the projection
parameter in raw lat/lng degrees, treating them as Cartesian. Longitude
degrees shrink with latitude, so the projected foot is slightly off the true
closest point. At city scale the error is a few meters; deviation outcomes
near the threshold depend on this exact behavior, so do not swap in a
tangent-plane projection without treating it as a behavior change.
"""

import math

from fleet_tracker.models import Position

EARTH_RADIUS_M = 6371000.0


def distance(p1: Position, p2: Position) -> float:
    """
    Great-circle distance between two positions in meters.

    Symmetric and non-negative; 0 for identical points.
    """
    lat1 = math.radians(p1.latitude)
    lat2 = math.radians(p2.latitude)
    dlat = math.radians(p2.latitude - p1.latitude)
    dlng = math.radians(p2.longitude - p1.longitude)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    )
    # Clamp rounding noise so sqrt(1 - a) never goes negative
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def point_to_segment_distance(point: Position, seg_a: Position, seg_b: Position) -> float:
    """
    Distance in meters from point to the segment seg_a -> seg_b.

    The projection parameter t is computed in degree space and clamped to
    [0, 1]; a zero-length segment collapses to seg_a. The final distance to the
    projected point is geodesic.
    """
    dx = seg_b.latitude - seg_a.latitude
    dy = seg_b.longitude - seg_a.longitude
    length_sq = dx * dx + dy * dy

    if length_sq == 0:
        return distance(point, seg_a)

    t = (
        (point.latitude - seg_a.latitude) * dx
        + (point.longitude - seg_a.longitude) * dy
    ) / length_sq
    t = max(0.0, min(1.0, t))

    foot = Position(seg_a.latitude + t * dx, seg_a.longitude + t * dy)
    return distance(point, foot)

