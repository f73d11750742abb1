"""
Traffic enrichment and aggregation for resolved access points.

Each access point gets its own two-tier traffic lookup, run concurrently:
the lookups are independent (no shared mutable state), so wall-clock time
is the slowest single lookup rather than the sum.  A lookup that fails or
times out degrades only its own access point to the classification
estimate.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from access_points import AccessPoint
from sa_trace import get_trace, set_trace
from traffic_volume import (
    TrafficRecord,
    estimate_from_classification,
    lookup_authoritative,
    resolve_traffic,
)

logger = logging.getLogger(__name__)

UNKNOWN_ROAD = "Unknown"


@dataclass
class AccessPointSet:
    """Ranked, enriched access points for one parcel."""
    access_points: List[AccessPoint] = field(default_factory=list)
    road_count: int = 0
    total_vpd: int = 0
    primary_road: Optional[AccessPoint] = None

    @property
    def roads(self) -> List[AccessPoint]:
        """Access points ordered by traffic, busiest first (stable)."""
        return sorted(self.access_points, key=lambda ap: -_vpd(ap))


def _vpd(ap: AccessPoint) -> int:
    return ap.traffic.vpd if ap.traffic else 0


def enrich_access_points(
    points: List[AccessPoint],
    lookup: Optional[Callable[..., Optional[TrafficRecord]]] = None,
) -> List[AccessPoint]:
    """Attach a TrafficRecord to every access point (in place); returns *points*."""
    if not points:
        return points
    lookup = lookup or lookup_authoritative

    parent_trace = get_trace()

    def _resolve(ap: AccessPoint) -> TrafficRecord:
        set_trace(parent_trace)
        lat, lng = ap.coordinates
        return resolve_traffic(lat, lng, ap.road_name, ap.highway_class, lookup=lookup)

    with ThreadPoolExecutor(max_workers=len(points)) as pool:
        futures = [(ap, pool.submit(_resolve, ap)) for ap in points]
        for ap, future in futures:
            try:
                ap.traffic = future.result()
            except Exception:
                logger.warning(
                    "Traffic enrichment failed for %s; using estimate",
                    ap.road_name, exc_info=True,
                )
                ap.traffic = estimate_from_classification(ap.highway_class)

    return points


def aggregate(points: List[AccessPoint]) -> AccessPointSet:
    """Summary statistics over enriched access points."""
    if not points:
        return AccessPointSet()

    by_vpd = sorted(points, key=lambda ap: -_vpd(ap))
    return AccessPointSet(
        access_points=list(points),
        road_count=len({ap.road_name for ap in points}),
        total_vpd=sum(_vpd(ap) for ap in points),
        primary_road=by_vpd[0],
    )


# =============================================================================
# SERIALIZATION
# =============================================================================

def _serialize_access_point(ap: AccessPoint) -> Dict[str, Any]:
    traffic = ap.traffic
    return {
        "coordinates": [ap.coordinates[0], ap.coordinates[1]],
        "roadName": ap.road_name,
        "type": "access",
        "roadType": ap.highway_class,
        "distance": round(ap.distance_m, 1),
        "detectionMethod": ap.detection_method.value,
        "vpd": traffic.vpd if traffic else None,
        "vpdYear": traffic.year if traffic and traffic.year else None,
        "vpdSource": traffic.source.value if traffic else None,
        "estimatedVpd": estimate_from_classification(ap.highway_class).vpd,
    }


def serialize_access_point_set(result: AccessPointSet) -> Dict[str, Any]:
    """The engine's external response record."""
    primary = result.primary_road
    return {
        "accessPoints": [_serialize_access_point(ap) for ap in result.access_points],
        "roadCount": result.road_count,
        "roads": [
            {
                "name": ap.road_name,
                "type": ap.highway_class,
                "vpd": ap.traffic.vpd if ap.traffic else None,
                "vpdSource": ap.traffic.source.value if ap.traffic else None,
            }
            for ap in result.roads
        ],
        "totalVpd": result.total_vpd,
        "primaryRoadVpd": _vpd(primary) if primary else 0,
        "primaryRoadName": primary.road_name if primary else UNKNOWN_ROAD,
    }
