"""
Site access analysis — parcel + coordinate in, enriched access points out.

    validate_request → fetch_roads → resolve_access_points
                     → enrich_access_points → aggregate

Input validation is the only failure that reaches the caller
(InvalidSiteRequestError).  Upstream outages degrade inside the gateways:
no roads gives an empty result, no traffic count gives an estimate.
"""

import logging
import math
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple

from access_config import RESOLVER_CONFIG, ResolverConfig
from access_points import prepare_parcel, resolve_access_points
from enrichment import AccessPointSet, aggregate, enrich_access_points
from geometry import LatLng, max_vertex_distance_m, polygon_area_m2
from road_network import RoadSegment, fetch_roads
from sa_trace import get_trace
from traffic_volume import TrafficRecord

logger = logging.getLogger(__name__)


# Anything smaller is a line or a point, not a parcel.
MIN_PARCEL_AREA_M2 = 0.01


class InvalidSiteRequestError(ValueError):
    """Malformed parcel boundary or query coordinate."""

    pass


# =============================================================================
# VALIDATION
# =============================================================================

def _coerce_lat_lng(lat: Any, lng: Any) -> LatLng:
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        raise InvalidSiteRequestError("Coordinates must be numeric")
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        raise InvalidSiteRequestError("Coordinates must be finite")
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
        raise InvalidSiteRequestError("Coordinates out of range")
    return (lat_f, lng_f)


def validate_request(
    parcel_boundary: Any, coordinates: Any
) -> Tuple[List[LatLng], LatLng]:
    """Check and normalise a request body.

    parcel_boundary: sequence of [lat, lng] pairs (open or closed).
    coordinates: {"lat": .., "lng": ..}.

    Returns (vertices, (lat, lng)).  Raises InvalidSiteRequestError.
    """
    if not isinstance(parcel_boundary, (list, tuple)) or len(parcel_boundary) < 3:
        raise InvalidSiteRequestError("Invalid parcel boundary")

    vertices: List[LatLng] = []
    for pair in parcel_boundary:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise InvalidSiteRequestError("Invalid parcel boundary")
        vertices.append(_coerce_lat_lng(pair[0], pair[1]))

    if len(set(vertices)) < 3:
        raise InvalidSiteRequestError("Parcel boundary needs at least 3 distinct vertices")

    if polygon_area_m2(vertices) < MIN_PARCEL_AREA_M2:
        raise InvalidSiteRequestError("Parcel boundary encloses no area")

    if not isinstance(coordinates, dict) or coordinates.get("lat") is None \
            or coordinates.get("lng") is None:
        raise InvalidSiteRequestError("Coordinates required")

    return vertices, _coerce_lat_lng(coordinates["lat"], coordinates["lng"])


# =============================================================================
# SEARCH RADIUS
# =============================================================================

def effective_radius_m(
    parcel_ring: Sequence[LatLng],
    center: LatLng,
    config: ResolverConfig = RESOLVER_CONFIG,
) -> float:
    """Farthest vertex of the prepared (possibly buffered) parcel from *center*."""
    return max_vertex_distance_m(center, prepare_parcel(parcel_ring, config))


def search_radius_m(
    parcel_ring: Sequence[LatLng],
    center: LatLng,
    config: ResolverConfig = RESOLVER_CONFIG,
) -> float:
    """Overpass search radius that covers the parcel plus the fallback reach."""
    return max(
        config.min_search_radius_m,
        effective_radius_m(parcel_ring, center, config) + config.search_margin_m,
    )


# =============================================================================
# ORCHESTRATION
# =============================================================================

def _timed_stage(stage_name, fn, *args, **kwargs):
    """Run *fn* with timing.  Logs duration and re-raises on failure."""
    trace = get_trace()
    if trace:
        trace.start_stage(stage_name)
    t0 = time.time()
    try:
        result = fn(*args, **kwargs)
        t1 = time.time()
        if trace:
            trace.record_stage(stage_name, t0, t1)
        else:
            logger.info("  [stage] %s OK (%.1fs)", stage_name, t1 - t0)
        return result
    except Exception as exc:
        t1 = time.time()
        if trace:
            trace.record_stage(
                stage_name, t0, t1,
                error_class=type(exc).__name__,
                error_message=str(exc)[:200],
            )
        else:
            logger.warning("  [stage] %s FAILED (%.1fs)", stage_name, t1 - t0, exc_info=True)
        raise


def analyze_site_access(
    parcel_boundary: Sequence[LatLng],
    lat: float,
    lng: float,
    fetch: Optional[Callable[[float, float, float], List[RoadSegment]]] = None,
    lookup: Optional[Callable[..., Optional[TrafficRecord]]] = None,
    config: ResolverConfig = RESOLVER_CONFIG,
) -> AccessPointSet:
    """Resolve and enrich the access points of one parcel.

    *parcel_boundary* must already be validated (see validate_request).
    *fetch* and *lookup* default to the live gateways.
    """
    fetch = fetch or fetch_roads
    trace = get_trace()
    if trace:
        trace.config_version = config.version

    center = (lat, lng)
    radius = search_radius_m(parcel_boundary, center, config)
    logger.info(
        "Site access: %d-vertex parcel at %.5f,%.5f, search radius %dm",
        len(parcel_boundary), lat, lng, int(radius),
    )

    roads = _timed_stage("fetch_roads", fetch, lat, lng, radius)
    points = _timed_stage("resolve", resolve_access_points, parcel_boundary, roads, config)
    _timed_stage("enrich", enrich_access_points, points, lookup=lookup)
    return aggregate(points)
