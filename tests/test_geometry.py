"""Unit tests for geometry.py — planar helpers on lat/lng rings and polylines."""

import pytest

from geometry import (
    buffer_polygon,
    close_ring,
    distance_point_to_polyline,
    haversine_m,
    line_intersections,
    max_vertex_distance_m,
    nearest_point_on_polyline,
    point_in_polygon,
    polygon_area_m2,
)


# =========================================================================
# Rings
# =========================================================================

class TestCloseRing:
    def test_open_ring_gets_first_vertex_appended(self, square):
        ring = square(50)
        closed = close_ring(ring)
        assert len(closed) == 5
        assert closed[0] == closed[-1]

    def test_closed_ring_is_unchanged(self, square):
        closed = close_ring(square(50))
        assert close_ring(closed) == closed

    def test_too_few_vertices_raises(self):
        with pytest.raises(ValueError):
            close_ring([(0.0, 0.0), (0.0, 1.0)])


class TestPolygonArea:
    def test_collinear_ring_has_no_area(self, offset):
        assert polygon_area_m2([offset(-50, 0), offset(0, 0), offset(50, 0)]) == pytest.approx(0, abs=1e-6)

    def test_square_area(self, square):
        # 100m x 100m
        assert polygon_area_m2(square(50)) == pytest.approx(10000, rel=0.01)

    def test_orientation_does_not_matter(self, square):
        ring = square(50)
        assert polygon_area_m2(list(reversed(ring))) == pytest.approx(
            polygon_area_m2(ring)
        )


class TestPointInPolygon:
    def test_same_answer_either_orientation(self, square, offset):
        ring = square(50)
        for pt in (offset(49, 49), offset(51, 0)):
            assert point_in_polygon(pt, ring) == point_in_polygon(pt, list(reversed(ring)))

    def test_center_inside(self, square, offset):
        assert point_in_polygon(offset(0, 0), square(50))

    def test_outside(self, square, offset):
        assert not point_in_polygon(offset(80, 0), square(50))

    def test_accepts_closed_ring(self, square, offset):
        assert point_in_polygon(offset(10, -10), close_ring(square(50)))


class TestBufferPolygon:
    def test_square_grows_by_distance_on_every_side(self, square):
        # 10m x 10m footprint buffered 20m -> 50m x 50m
        buffered = buffer_polygon(square(5), 20)
        assert buffered[0] == buffered[-1]
        assert polygon_area_m2(buffered) == pytest.approx(2500, rel=0.02)

    def test_buffered_ring_contains_footprint(self, square):
        buffered = buffer_polygon(square(5), 20)
        for vertex in square(5):
            assert point_in_polygon(vertex, buffered)

    def test_clockwise_ring_also_grows(self, square):
        buffered = buffer_polygon(list(reversed(square(5))), 20)
        assert polygon_area_m2(buffered) == pytest.approx(2500, rel=0.02)

    def test_collinear_ring_buffers_to_a_band(self, offset):
        line_ring = [offset(-50, 0), offset(0, 0), offset(50, 0)]
        buffered = buffer_polygon(line_ring, 20)
        # 100m long, 20m each side; ends may be bevelled or rounded
        assert 3600 < polygon_area_m2(buffered) < 5400
        for east in (-45, 0, 45):
            assert point_in_polygon(offset(east, 0), buffered)
        assert point_in_polygon(offset(0, 15), buffered)

    def test_zero_distance_returns_closed_input(self, square):
        assert buffer_polygon(square(5), 0) == close_ring(square(5))


class TestMaxVertexDistance:
    def test_square_corner_distance(self, square, offset):
        # half-diagonal of a 100m square
        assert max_vertex_distance_m(offset(0, 0), square(50)) == pytest.approx(70.7, abs=0.5)


# =========================================================================
# Polylines
# =========================================================================

class TestNearestPointOnPolyline:
    def test_perpendicular_projection(self, offset):
        line = [offset(-100, 0), offset(100, 0)]
        point, dist = nearest_point_on_polyline(line, offset(0, 10))
        assert dist == pytest.approx(10, abs=0.05)
        assert haversine_m(point, offset(0, 0)) == pytest.approx(0, abs=0.05)

    def test_clamps_to_segment_end(self, offset):
        line = [offset(-100, 0), offset(0, 0)]
        point, dist = nearest_point_on_polyline(line, offset(30, 40))
        assert dist == pytest.approx(50, abs=0.1)
        assert haversine_m(point, offset(0, 0)) == pytest.approx(0, abs=0.05)

    def test_empty_polyline_raises(self, offset):
        with pytest.raises(ValueError):
            nearest_point_on_polyline([], offset(0, 0))


class TestDistancePointToPolyline:
    def test_meters(self, offset):
        line = [offset(-100, 0), offset(100, 0)]
        assert distance_point_to_polyline(offset(0, 25), line) == pytest.approx(25, abs=0.05)

    def test_feet(self, offset):
        line = [offset(-100, 0), offset(100, 0)]
        feet = distance_point_to_polyline(offset(0, 10), line, units="feet")
        assert feet == pytest.approx(32.8, abs=0.2)

    def test_unknown_units_raise(self, offset):
        with pytest.raises(ValueError):
            distance_point_to_polyline(offset(0, 0), [offset(0, 0), offset(1, 0)], units="miles")


class TestLineIntersections:
    def test_single_crossing(self, offset):
        a = [offset(-100, 0), offset(100, 0)]
        b = [offset(0, -100), offset(0, 100)]
        hits = line_intersections(a, b)
        assert len(hits) == 1
        assert haversine_m(hits[0], offset(0, 0)) == pytest.approx(0, abs=0.01)

    def test_road_through_square_crosses_twice(self, square, offset):
        boundary = close_ring(square(50))
        road = [offset(-100, 10), offset(100, 10)]
        assert len(line_intersections(road, boundary)) == 2

    def test_ordered_along_first_line(self, square, offset):
        boundary = close_ring(square(50))
        west_to_east = line_intersections([offset(-100, 10), offset(100, 10)], boundary)
        east_to_west = line_intersections([offset(100, 10), offset(-100, 10)], boundary)
        assert west_to_east[0][1] < west_to_east[1][1]
        assert east_to_west[0][1] > east_to_west[1][1]

    def test_parallel_lines_do_not_intersect(self, offset):
        a = [offset(-100, 0), offset(100, 0)]
        b = [offset(-100, 10), offset(100, 10)]
        assert line_intersections(a, b) == []

    def test_collinear_overlap_is_ignored(self, offset):
        a = [offset(-100, 0), offset(50, 0)]
        b = [offset(-50, 0), offset(100, 0)]
        assert line_intersections(a, b) == []

    def test_endpoint_contact_counts(self, offset):
        a = [offset(-100, 0), offset(0, 0)]
        b = [offset(0, -100), offset(0, 100)]
        assert len(line_intersections(a, b)) == 1

    def test_disjoint_segments(self, offset):
        a = [offset(-100, 0), offset(-50, 0)]
        b = [offset(0, -100), offset(0, 100)]
        assert line_intersections(a, b) == []

    def test_degenerate_input(self, offset):
        assert line_intersections([offset(0, 0)], [offset(0, -1), offset(0, 1)]) == []


class TestHaversine:
    def test_one_degree_latitude(self):
        assert haversine_m((0.0, 0.0), (1.0, 0.0)) == pytest.approx(111195, rel=0.001)
