"""
Road Network Gateway — roads near a coordinate from OpenStreetMap.

Queries Overpass (through overpass_http's mirror fallback) for every
commercially relevant highway class within a radius and returns them as
RoadSegment objects with inline geometry.

Data sources:
  - OpenStreetMap Overpass API (highway=*, name, ref, service tags; way
    geometry via `out geom`)

Limitations:
  - Geometry is whatever OSM has: centrelines, not carriageway edges, and
    no guarantee of topological correctness.
  - Long ways are returned whole even if only a short stretch falls inside
    the radius.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from overpass_http import OverpassUnavailableError, overpass_query

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Highway classes that can give access to a commercial site, most to least
# significant.  service covers driveways and parking aisles.
HIGHWAY_CLASSES = (
    "motorway", "motorway_link",
    "trunk", "trunk_link",
    "primary", "primary_link",
    "secondary", "secondary_link",
    "tertiary", "tertiary_link",
    "residential",
    "unclassified",
    "living_street",
    "service",
)

UNNAMED_ROAD = "Unnamed Road"

QUERY_TIMEOUT_S = 15


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class RoadSegment:
    """One OSM way with geometry."""
    id: int
    nodes: List[Tuple[float, float]]  # list of (lat, lng) pairs
    highway_class: str
    name: Optional[str] = None
    ref: Optional[str] = None
    service_subtype: Optional[str] = None  # e.g. "driveway", "parking_aisle"

    @property
    def display_name(self) -> str:
        return self.name or self.ref or UNNAMED_ROAD

    @property
    def is_service(self) -> bool:
        return self.highway_class == "service"


# =============================================================================
# OVERPASS
# =============================================================================

def _build_query(lat: float, lng: float, radius_m: int) -> str:
    """Overpass QL for all access-relevant roads around a point."""
    highway_regex = "|".join(HIGHWAY_CLASSES)
    return f"""
    [out:json][timeout:{QUERY_TIMEOUT_S}];
    (
      way["highway"~"^({highway_regex})$"](around:{radius_m},{lat},{lng});
    );
    out body geom;
    """


def _parse_roads(data: dict) -> List[RoadSegment]:
    """Turn an Overpass `out geom` response into RoadSegment objects.

    Ways without a recognised highway class or with fewer than two
    geometry vertices are skipped.
    """
    roads: List[RoadSegment] = []
    for element in data.get("elements", []):
        if element.get("type") != "way":
            continue
        tags = element.get("tags") or {}
        highway_class = tags.get("highway", "")
        if highway_class not in HIGHWAY_CLASSES:
            continue

        nodes: List[Tuple[float, float]] = []
        for geom in element.get("geometry") or []:
            if not isinstance(geom, dict):
                continue
            try:
                nodes.append((float(geom["lat"]), float(geom["lon"])))
            except (KeyError, TypeError, ValueError):
                continue

        if len(nodes) < 2:
            continue

        roads.append(RoadSegment(
            id=element.get("id", 0),
            nodes=nodes,
            highway_class=highway_class,
            name=tags.get("name") or None,
            ref=tags.get("ref") or None,
            service_subtype=tags.get("service") or None,
        ))

    return roads


def fetch_roads(lat: float, lng: float, radius_m: float) -> List[RoadSegment]:
    """Fetch all access-relevant roads within *radius_m* of a point.

    Returns an empty list when every Overpass mirror fails or the response
    cannot be parsed (graceful degradation — never raises).
    """
    query = _build_query(lat, lng, int(round(radius_m)))
    try:
        data = overpass_query(query, caller="road_network.fetch_roads")
    except OverpassUnavailableError:
        logger.warning(
            "Road network unavailable near %.5f,%.5f; continuing with no roads",
            lat, lng, exc_info=True,
        )
        return []

    try:
        roads = _parse_roads(data)
    except (AttributeError, TypeError):
        logger.warning("Malformed Overpass road response", exc_info=True)
        return []

    logger.info(
        "Road network: %d roads within %dm of %.5f,%.5f (%d service)",
        len(roads), int(radius_m), lat, lng,
        sum(1 for r in roads if r.is_service),
    )
    return roads
