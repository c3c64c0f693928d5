"""Geographic helpers for coverage math."""

import math
from collections.abc import Sequence
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0

# Latitudes above this cannot exist, so a first component beyond it means lng-first
MAX_LATITUDE = 90.0
MAX_LONGITUDE = 180.0


@dataclass(frozen=True)
class Bounds:
    """Rectangular lat/lng viewport (edges inclusive)."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float | None, lng: float | None) -> bool:
        if lat is None or lng is None:
            return False
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


def _as_float(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def is_valid_coordinate(lat, lng) -> bool:
    """Check that lat/lng are finite numbers inside the WGS84 ranges."""
    lat_f = _as_float(lat)
    lng_f = _as_float(lng)
    if lat_f is None or lng_f is None:
        return False
    return abs(lat_f) <= MAX_LATITUDE and abs(lng_f) <= MAX_LONGITUDE


def haversine_distance_m(a: Sequence[float], b: Sequence[float]) -> float:
    """Great-circle distance in meters between two (lat, lng) points.

    Missing or non-finite coordinates give ``math.inf`` so callers looking
    for a minimum simply skip them.
    """
    if a is None or b is None or len(a) < 2 or len(b) < 2:
        return math.inf
    lat1, lng1 = _as_float(a[0]), _as_float(a[1])
    lat2, lng2 = _as_float(b[0]), _as_float(b[1])
    if None in (lat1, lng1, lat2, lng2):
        return math.inf

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push h a hair above 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def normalize_polygon_axis_order(vertices: Sequence[Sequence[float]]) -> list[list[float]]:
    """Return the ring in (lat, lng) order.

    Only the first vertex is inspected: if its first component is beyond
    +/-90 it cannot be a latitude, so every vertex is swapped. A ring that
    fits inside +/-90 on both axes is returned unchanged even if it was
    lng-first; use this only for sources that do not declare axis order.
    """
    ring = [[float(v[0]), float(v[1])] for v in vertices]
    if not ring:
        return []
    if abs(ring[0][0]) > MAX_LATITUDE:
        return [[lng_lat[1], lng_lat[0]] for lng_lat in ring]
    return ring


def point_in_bounds(point: Sequence[float], bounds: Bounds) -> bool:
    """Rectangular containment test used to cull off-screen points."""
    if point is None or len(point) < 2:
        return False
    return bounds.contains(_as_float(point[0]), _as_float(point[1]))


def _open_ring(vertices: Sequence[Sequence[float]]) -> list[tuple[float, float]]:
    ring = [(float(v[0]), float(v[1])) for v in vertices]
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring = ring[:-1]
    return ring


def polygon_centroid(vertices: Sequence[Sequence[float]]) -> tuple[float, float] | None:
    """Arithmetic mean of the ring vertices (not the area centroid).

    A closing vertex that repeats the first one is counted once.
    """
    ring = _open_ring(vertices)
    if not ring:
        return None
    lat = sum(v[0] for v in ring) / len(ring)
    lng = sum(v[1] for v in ring) / len(ring)
    return lat, lng


def distinct_vertex_count(vertices: Sequence[Sequence[float]]) -> int:
    return len({(float(v[0]), float(v[1])) for v in vertices})
