"""
Geometry kernel for parcel / road matching.

Functions take and return (lat, lng) tuples.  At the scale we operate (a
parcel and the roads within a few hundred metres of it) a local
equirectangular projection is accurate to well under a metre, so each
operation projects its inputs into a metric frame centred on their mean
position, runs the shapely operation there, and converts results back.

Conventions:
  - Points are (lat, lng) tuples.
  - A "ring" is a polygon vertex list; a "polyline" is an open vertex list.
  - Functions return sentinels ([] / False / 0.0) rather than raising for
    malformed-but-non-empty input.  Empty polylines and rings with fewer
    than 3 vertices are caller errors and raise ValueError.
"""

import math
from typing import Iterable, List, Sequence, Tuple

from shapely.geometry import LineString, Point, Polygon
from shapely.ops import nearest_points
from shapely.validation import make_valid

LatLng = Tuple[float, float]

# Metres per degree of latitude (mean).  Longitude degrees are scaled by
# cos(latitude) at the frame origin.
METERS_PER_DEGREE = 111_320.0

EARTH_RADIUS_M = 6_371_008.8

UNIT_FACTORS = {
    "meters": 1.0,
    "kilometers": 0.001,
    "feet": 3.280839895,
}

# Mitre joins longer than this multiple of the buffer distance are bevelled
# so sharp parcel corners don't produce spikes.
MITER_LIMIT = 2.0

# Decimal places used to merge intersection points that are the same place.
_INTERSECTION_PRECISION = 9


# =============================================================================
# LOCAL METRIC FRAME
# =============================================================================

class _LocalFrame:
    """Equirectangular projection about the mean of a set of points."""

    def __init__(self, points: Iterable[LatLng]):
        pts = list(points)
        self.lat0 = sum(p[0] for p in pts) / len(pts)
        self.lng0 = sum(p[1] for p in pts) / len(pts)
        self._kx = METERS_PER_DEGREE * math.cos(math.radians(self.lat0))

    def to_local(self, point: LatLng) -> Tuple[float, float]:
        return (
            (point[1] - self.lng0) * self._kx,
            (point[0] - self.lat0) * METERS_PER_DEGREE,
        )

    def from_local(self, x: float, y: float) -> LatLng:
        return (
            self.lat0 + y / METERS_PER_DEGREE,
            self.lng0 + x / self._kx,
        )

    def polygon(self, ring: Sequence[LatLng]) -> Polygon:
        return Polygon([self.to_local(v) for v in ring])

    def line(self, polyline: Sequence[LatLng]) -> LineString:
        return LineString([self.to_local(v) for v in polyline])

    def point(self, point: LatLng) -> Point:
        return Point(self.to_local(point))


def haversine_m(a: LatLng, b: LatLng) -> float:
    """Great-circle distance between two (lat, lng) points in metres."""
    lat1_r, lon1_r = math.radians(a[0]), math.radians(a[1])
    lat2_r, lon2_r = math.radians(b[0]), math.radians(b[1])

    dlat = lat2_r - lat1_r
    dlon = lon2_r - lon1_r

    h = (math.sin(dlat / 2) ** 2
         + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2)
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


# =============================================================================
# RINGS
# =============================================================================

def close_ring(vertices: Sequence[LatLng]) -> List[LatLng]:
    """Return a copy of *vertices* with the first vertex repeated at the end."""
    ring = [(float(lat), float(lng)) for lat, lng in vertices]
    if len(ring) < 3:
        raise ValueError(f"ring needs at least 3 vertices, got {len(ring)}")
    if ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def polygon_to_boundary_line(ring: Sequence[LatLng]) -> List[LatLng]:
    """The ring's vertices as an open polyline (closed ring, last == first)."""
    return close_ring(ring)


def _ring_shape(ring: Sequence[LatLng]):
    """Closed ring, its frame, and a valid shape for it in that frame.

    Self-intersecting rings are repaired; a ring with no area comes back
    as line work.
    """
    closed = close_ring(ring)
    frame = _LocalFrame(set(closed))
    shape = frame.polygon(closed)
    if not shape.is_valid:
        shape = make_valid(shape)
    return closed, frame, shape


def polygon_area_m2(ring: Sequence[LatLng]) -> float:
    """Planar area of the ring in square metres (0 for degenerate rings)."""
    _, _, shape = _ring_shape(ring)
    return shape.area


def point_in_polygon(point: LatLng, ring: Sequence[LatLng]) -> bool:
    """True when *point* lies strictly inside the ring."""
    _, frame, shape = _ring_shape(ring)
    return shape.contains(frame.point(point))


def buffer_polygon(ring: Sequence[LatLng], distance_m: float) -> List[LatLng]:
    """Offset the ring outward by *distance_m* and return the closed result.

    Mitred joins, clipped at MITER_LIMIT.  A ring with no area (all
    vertices on one line) is buffered as a line, giving a band of
    *distance_m* on each side.
    """
    closed, frame, shape = _ring_shape(ring)
    if distance_m <= 0:
        return closed

    buffered = shape.buffer(distance_m, join_style="mitre", mitre_limit=MITER_LIMIT)
    if buffered.geom_type == "MultiPolygon":
        buffered = max(buffered.geoms, key=lambda g: g.area)
    return [frame.from_local(x, y) for x, y in buffered.exterior.coords]


def max_vertex_distance_m(point: LatLng, ring: Sequence[LatLng]) -> float:
    """Distance from *point* to the farthest vertex of *ring* (metres)."""
    return max(haversine_m(point, v) for v in ring)


# =============================================================================
# POLYLINES
# =============================================================================

def nearest_point_on_polyline(
    polyline: Sequence[LatLng], point: LatLng
) -> Tuple[LatLng, float]:
    """Closest point on *polyline* to *point*, and its distance in metres."""
    if not polyline:
        raise ValueError("polyline must not be empty")

    if len(polyline) == 1:
        only = (polyline[0][0], polyline[0][1])
        return only, haversine_m(point, only)

    frame = _LocalFrame([point])
    origin = frame.point(point)
    on_line, _ = nearest_points(frame.line(polyline), origin)
    return frame.from_local(on_line.x, on_line.y), on_line.distance(origin)


def distance_point_to_polyline(
    point: LatLng, polyline: Sequence[LatLng], units: str = "meters"
) -> float:
    """Minimum distance from *point* to any segment of *polyline*."""
    if units not in UNIT_FACTORS:
        raise ValueError(f"unsupported units: {units}")
    _, dist_m = nearest_point_on_polyline(polyline, point)
    return dist_m * UNIT_FACTORS[units]


def _points_of(geom) -> List[Point]:
    """Point parts of an intersection result; overlapping stretches are dropped."""
    if geom.is_empty:
        return []
    if geom.geom_type == "Point":
        return [geom]
    if hasattr(geom, "geoms"):
        return [p for part in geom.geoms for p in _points_of(part)]
    return []


def line_intersections(
    line_a: Sequence[LatLng], line_b: Sequence[LatLng]
) -> List[LatLng]:
    """All points where *line_a* crosses or touches *line_b*.

    Endpoint contact counts as an intersection.  Collinear overlaps
    contribute nothing.  Results are ordered along *line_a* with
    duplicates removed.
    """
    if len(line_a) < 2 or len(line_b) < 2:
        return []

    frame = _LocalFrame(list(line_a) + list(line_b))
    a = frame.line(line_a)
    b = frame.line(line_b)
    if a.length == 0 or b.length == 0:
        return []

    found: List[LatLng] = []
    seen = set()
    for pt in sorted(_points_of(a.intersection(b)), key=a.project):
        lat, lng = frame.from_local(pt.x, pt.y)
        key = (round(lat, _INTERSECTION_PRECISION), round(lng, _INTERSECTION_PRECISION))
        if key in seen:
            continue
        seen.add(key)
        found.append((lat, lng))
    return found
