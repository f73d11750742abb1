"""
Access-Point Resolver — where a parcel meets the road network.

Given a parcel ring and the roads around it, find one best access point per
named road.  Pure: no I/O, no state between calls.

Detection runs three passes per road:
  1. Intersection — the road polyline crosses or touches the parcel
     boundary.  Distance 0.
  2. Proximity — a road vertex lies inside the parcel or within
     proximity_max_m of the boundary.  Inside vertices rank ahead of
     outside ones (negative effective distance).
  3. Nearest-point fallback — only for roads with nothing from 1–2: the
     closest road point to any boundary vertex, if within fallback_max_m.

Selection then narrows the candidate list:
  - service roads are dropped when any public road, named or not,
    produced a candidate;
  - unnamed roads are dropped (no addressable identity downstream);
  - a location (rounded to dedup_precision decimals) is accepted once,
    visiting candidates best-first;
  - per road name, the smallest effective distance wins, earliest
    candidate on ties;
  - result sorted service-last, then by distance.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from access_config import RESOLVER_CONFIG, ResolverConfig
from geometry import (
    LatLng,
    buffer_polygon,
    close_ring,
    distance_point_to_polyline,
    line_intersections,
    nearest_point_on_polyline,
    point_in_polygon,
    polygon_area_m2,
    polygon_to_boundary_line,
)
from road_network import UNNAMED_ROAD, RoadSegment
from traffic_volume import TrafficRecord

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

class DetectionMethod(str, Enum):
    INTERSECTION = "intersection"
    PROXIMITY = "proximity"
    NEAREST_FALLBACK = "nearest-fallback"


@dataclass
class AccessPoint:
    """A point where the parcel is reachable from a road."""
    coordinates: Tuple[float, float]      # (lat, lng)
    road_name: str
    highway_class: str
    distance_m: float                     # >= 0; 0 = boundary contact
    detection_method: DetectionMethod
    effective_distance_m: float = 0.0     # ranking key; negative = inside parcel
    road_id: int = 0
    service_subtype: Optional[str] = None
    traffic: Optional[TrafficRecord] = None  # set by enrichment

    @property
    def is_service(self) -> bool:
        return self.highway_class == "service"

    def location_key(self, precision: int) -> Tuple[float, float]:
        return (
            round(self.coordinates[0], precision),
            round(self.coordinates[1], precision),
        )


# =============================================================================
# PARCEL PREPARATION
# =============================================================================

def prepare_parcel(
    ring: Sequence[LatLng], config: ResolverConfig = RESOLVER_CONFIG
) -> List[LatLng]:
    """Close the ring, and buffer it if it looks like a building footprint."""
    closed = close_ring(ring)
    area = polygon_area_m2(closed)
    if area < config.small_parcel_area_m2:
        logger.info(
            "Parcel area %.0f m² < %.0f m²; treating as footprint, buffering %.0fm",
            area, config.small_parcel_area_m2, config.small_parcel_buffer_m,
        )
        return buffer_polygon(closed, config.small_parcel_buffer_m)
    return closed


# =============================================================================
# DETECTION PASSES
# =============================================================================

def _candidate(
    road: RoadSegment,
    point: LatLng,
    effective: float,
    method: DetectionMethod,
) -> AccessPoint:
    return AccessPoint(
        coordinates=(point[0], point[1]),
        road_name=road.display_name,
        highway_class=road.highway_class,
        distance_m=max(0.0, effective),
        detection_method=method,
        effective_distance_m=effective,
        road_id=road.id,
        service_subtype=road.service_subtype,
    )


def _intersection_candidates(
    road: RoadSegment, boundary: List[LatLng]
) -> List[AccessPoint]:
    return [
        _candidate(road, pt, 0.0, DetectionMethod.INTERSECTION)
        for pt in line_intersections(road.nodes, boundary)
    ]


def _proximity_candidates(
    road: RoadSegment,
    ring: List[LatLng],
    boundary: List[LatLng],
    config: ResolverConfig,
) -> List[AccessPoint]:
    found = []
    for vertex in road.nodes:
        dist = distance_point_to_polyline(vertex, boundary)
        if point_in_polygon(vertex, ring):
            found.append(_candidate(road, vertex, -dist, DetectionMethod.PROXIMITY))
        elif dist <= config.proximity_max_m:
            found.append(_candidate(road, vertex, dist, DetectionMethod.PROXIMITY))
    return found


def _fallback_candidate(
    road: RoadSegment, ring: List[LatLng], config: ResolverConfig
) -> Optional[AccessPoint]:
    best_point: Optional[LatLng] = None
    best_dist = float("inf")
    for vertex in ring[:-1]:
        on_road, dist = nearest_point_on_polyline(road.nodes, vertex)
        if dist < best_dist:
            best_dist = dist
            best_point = on_road
    if best_point is None or best_dist > config.fallback_max_m:
        return None
    return _candidate(road, best_point, best_dist, DetectionMethod.NEAREST_FALLBACK)


def find_candidates(
    ring: List[LatLng],
    roads: Sequence[RoadSegment],
    config: ResolverConfig = RESOLVER_CONFIG,
) -> List[AccessPoint]:
    """All detection-pass candidates, in road order and pass order."""
    boundary = polygon_to_boundary_line(ring)
    candidates: List[AccessPoint] = []
    for road in roads:
        if len(road.nodes) < 2:
            continue
        found = _intersection_candidates(road, boundary)
        found.extend(_proximity_candidates(road, ring, boundary, config))
        if not found:
            fallback = _fallback_candidate(road, ring, config)
            if fallback is not None:
                found.append(fallback)
        candidates.extend(found)
    return candidates


# =============================================================================
# SELECTION
# =============================================================================

def select_access_points(
    candidates: List[AccessPoint],
    config: ResolverConfig = RESOLVER_CONFIG,
) -> List[AccessPoint]:
    """Reduce raw candidates to one ranked access point per named road."""
    if any(not c.is_service for c in candidates):
        candidates = [c for c in candidates if not c.is_service]

    named = [c for c in candidates if c.road_name != UNNAMED_ROAD]

    # Best-first (stable, so insertion order breaks ties) location dedup.
    accepted_ids = set()
    seen_locations = set()
    for cand in sorted(named, key=lambda c: c.effective_distance_m):
        key = cand.location_key(config.dedup_precision)
        if key in seen_locations:
            continue
        seen_locations.add(key)
        accepted_ids.add(id(cand))

    groups: Dict[str, List[AccessPoint]] = {}
    for cand in named:
        if id(cand) in accepted_ids:
            groups.setdefault(cand.road_name, []).append(cand)

    best = [min(group, key=lambda c: c.effective_distance_m) for group in groups.values()]
    return sorted(best, key=lambda c: (c.is_service, c.distance_m))


def resolve_access_points(
    parcel_ring: Sequence[LatLng],
    roads: Sequence[RoadSegment],
    config: ResolverConfig = RESOLVER_CONFIG,
) -> List[AccessPoint]:
    """One ranked access point per named road touching or near the parcel."""
    if not roads:
        return []

    ring = prepare_parcel(parcel_ring, config)
    candidates = find_candidates(ring, roads, config)
    points = select_access_points(candidates, config)

    logger.info(
        "Resolved %d access point(s) from %d candidate(s) on %d road(s)",
        len(points), len(candidates), len(roads),
    )
    for ap in points:
        logger.debug(
            "  %s (%s%s) %.1fm via %s at %.5f,%.5f",
            ap.road_name, ap.highway_class,
            f"/{ap.service_subtype}" if ap.service_subtype else "",
            ap.distance_m, ap.detection_method.value,
            ap.coordinates[0], ap.coordinates[1],
        )
    return points
