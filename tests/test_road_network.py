"""Unit tests for road_network.py — Overpass road fetch and parsing."""

from unittest.mock import patch

from overpass_http import OverpassUnavailableError
from road_network import (
    HIGHWAY_CLASSES,
    UNNAMED_ROAD,
    RoadSegment,
    _build_query,
    _parse_roads,
    fetch_roads,
)


def _way(way_id, highway, coords, **tags):
    tags = dict(tags, highway=highway)
    return {
        "type": "way",
        "id": way_id,
        "tags": tags,
        "geometry": [{"lat": lat, "lon": lon} for lat, lon in coords],
    }


LINE = [(28.5, -81.4), (28.501, -81.4)]


# =========================================================================
# Query building
# =========================================================================

class TestBuildQuery:
    def test_includes_every_class_and_geometry(self):
        q = _build_query(28.5, -81.4, 150)
        for cls in ("motorway_link", "residential", "living_street", "service"):
            assert cls in q
        assert "around:150,28.5,-81.4" in q
        assert "out body geom" in q

    def test_anchored_regex(self):
        q = _build_query(28.5, -81.4, 100)
        assert '"^(' in q and ')$"' in q


# =========================================================================
# Parsing
# =========================================================================

class TestParseRoads:
    def test_parses_named_way(self):
        roads = _parse_roads({"elements": [_way(1, "primary", LINE, name="Colonial Dr")]})
        assert len(roads) == 1
        road = roads[0]
        assert road.id == 1
        assert road.highway_class == "primary"
        assert road.display_name == "Colonial Dr"
        assert road.nodes == LINE

    def test_ref_used_when_unnamed(self):
        roads = _parse_roads({"elements": [_way(2, "trunk", LINE, ref="SR 50")]})
        assert roads[0].display_name == "SR 50"

    def test_no_name_or_ref(self):
        roads = _parse_roads({"elements": [_way(3, "residential", LINE)]})
        assert roads[0].display_name == UNNAMED_ROAD

    def test_service_subtype_kept(self):
        roads = _parse_roads({"elements": [
            _way(4, "service", LINE, name="Mall Dr", service="parking_aisle"),
        ]})
        assert roads[0].is_service
        assert roads[0].service_subtype == "parking_aisle"

    def test_skips_unknown_class_short_geometry_and_nodes(self):
        data = {"elements": [
            _way(5, "footway", LINE, name="Trail"),
            _way(6, "residential", LINE[:1], name="Stub"),
            {"type": "node", "id": 7, "lat": 28.5, "lon": -81.4},
        ]}
        assert _parse_roads(data) == []

    def test_every_class_accepted(self):
        data = {"elements": [_way(i, cls, LINE) for i, cls in enumerate(HIGHWAY_CLASSES)]}
        assert len(_parse_roads(data)) == len(HIGHWAY_CLASSES)


# =========================================================================
# Fetch
# =========================================================================

class TestFetchRoads:
    @patch("road_network.overpass_query")
    def test_returns_parsed_roads(self, mock_query):
        mock_query.return_value = {"elements": [_way(1, "residential", LINE, name="Main St")]}
        roads = fetch_roads(28.5, -81.4, 149.6)

        assert [r.display_name for r in roads] == ["Main St"]
        assert "around:150," in mock_query.call_args[0][0]

    @patch("road_network.overpass_query",
           side_effect=OverpassUnavailableError("all down"))
    def test_unavailable_gives_empty_list(self, _mock_query):
        assert fetch_roads(28.5, -81.4, 100) == []

    @patch("road_network.overpass_query", return_value={"elements": None})
    def test_malformed_response_gives_empty_list(self, _mock_query):
        assert fetch_roads(28.5, -81.4, 100) == []


class TestRoadSegment:
    def test_name_wins_over_ref(self):
        seg = RoadSegment(id=1, nodes=LINE, highway_class="primary", name="Main", ref="US 1")
        assert seg.display_name == "Main"
        assert not seg.is_service
