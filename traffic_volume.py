"""
Traffic Volume Gateway — vehicles-per-day for an access point.

Two tiers:
  1. Authoritative: measured AADT counts from a transportation department's
     ArcGIS FeatureServer (TRAFFIC_COUNTS_URL), queried in a small envelope
     around the access point and matched to the access road by name.
  2. Estimated: a static average-VPD figure per OSM highway class.

Tier 1 failures (not configured, timeout, non-200, ArcGIS error body, bad
JSON, no positive count) all fall through to tier 2.  Nothing here raises
to the caller.

Limitations:
  - Count stations sit on the state/county network; most residential and
    service roads have no authoritative count and always get the estimate.
  - The name heuristic compares normalised strings only, so "SR 434" and
    "State Road 434" do not match.
"""

import logging
import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests

from sa_trace import get_trace

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# ArcGIS REST query endpoint, e.g. .../FeatureServer/0/query.  Empty
# disables the authoritative tier.
TRAFFIC_COUNTS_URL = os.environ.get("TRAFFIC_COUNTS_URL", "")


def _timeout_from_env() -> int:
    try:
        value = int(os.environ.get("TRAFFIC_COUNTS_TIMEOUT", "10"))
    except ValueError:
        value = 10
    return max(8, min(15, value))


TRAFFIC_COUNTS_TIMEOUT = _timeout_from_env()

# Half-width of the query envelope in degrees (~165 m box at mid latitudes).
ENVELOPE_HALF_DEG = 0.00075

OUT_FIELDS = "AADT,YEAR_,ROAD_NAME,DESC_TO,DESC_FRM"

# Score bonuses on top of the count year.  Only the ordering matters:
# a ROAD_NAME match outranks a both-directions match, which outranks
# recency alone.
ROAD_NAME_BONUS = 2000
BOTH_DESCRIPTIONS_BONUS = 1000


# =============================================================================
# CONSTANTS (classification estimates)
# =============================================================================

# Average vehicles/day by OSM highway class.  Link roads carry roughly half
# of their parent class.
ESTIMATED_VPD = {
    "motorway": 75000,
    "motorway_link": 37500,
    "trunk": 35000,
    "trunk_link": 17500,
    "primary": 20000,
    "primary_link": 10000,
    "secondary": 12000,
    "secondary_link": 6000,
    "tertiary": 5000,
    "tertiary_link": 2500,
    "residential": 1500,
    "unclassified": 800,
    "living_street": 250,
    "service": 200,
}

DEFAULT_CLASS = "unclassified"


# =============================================================================
# DATA CLASSES
# =============================================================================

class TrafficSource(str, Enum):
    AUTHORITATIVE = "authoritative"
    ESTIMATED = "estimated"


@dataclass
class TrafficRecord:
    """Traffic volume attached to one access point."""
    vpd: int
    year: int                     # 0 when unknown / estimated
    source: TrafficSource
    road_name: Optional[str] = None  # ROAD_NAME on the matched count record


# =============================================================================
# HELPERS
# =============================================================================

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_road_name(name: Optional[str]) -> str:
    """Lowercase and strip everything but letters and digits."""
    if not name:
        return ""
    return _NON_ALNUM.sub("", str(name).lower())


def _name_matches(normalized: str, field_value: Any) -> bool:
    """True when the field names the same road (normalised, exact)."""
    return bool(normalized) and normalize_road_name(field_value) == normalized


def _safe_int(val: Any, default: int = 0) -> int:
    if val is None or val == "":
        return default
    try:
        return int(float(val))
    except (TypeError, ValueError):
        return default


def score_count_record(attrs: Dict[str, Any], road_name: Optional[str]) -> int:
    """Rank a count record: newer is better, name matches much better.

    A match on just one of DESC_TO / DESC_FRM earns nothing: a single
    directional description is usually the cross street, not this road.
    """
    score = _safe_int(attrs.get("YEAR_"))
    normalized = normalize_road_name(road_name)
    if not normalized:
        return score

    if _name_matches(normalized, attrs.get("ROAD_NAME")):
        score += ROAD_NAME_BONUS
    if (_name_matches(normalized, attrs.get("DESC_TO"))
            and _name_matches(normalized, attrs.get("DESC_FRM"))):
        score += BOTH_DESCRIPTIONS_BONUS
    return score


def pick_best_record(
    features: List[Dict[str, Any]], road_name: Optional[str]
) -> Optional[TrafficRecord]:
    """Highest-scoring feature with a positive AADT; first seen wins ties."""
    best: Optional[TrafficRecord] = None
    best_score = None
    for feature in features:
        attrs = (feature or {}).get("attributes") or {}
        aadt = _safe_int(attrs.get("AADT"))
        if aadt <= 0:
            continue
        score = score_count_record(attrs, road_name)
        if best_score is None or score > best_score:
            best_score = score
            best = TrafficRecord(
                vpd=aadt,
                year=_safe_int(attrs.get("YEAR_")),
                source=TrafficSource.AUTHORITATIVE,
                road_name=attrs.get("ROAD_NAME") or None,
            )
    return best


def _record_api(t0: float, status_code: int, provider_status: str) -> None:
    """Record a traffic-count call to trace and health monitor."""
    elapsed_ms = int((time.time() - t0) * 1000)
    trace = get_trace()
    if trace:
        trace.record_call(
            service="traffic_counts",
            endpoint="lookup_authoritative",
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
        )
    try:
        from health_monitor import record_call
        record_call(
            "traffic_counts", provider_status == "ok", elapsed_ms,
            None if provider_status == "ok" else provider_status,
        )
    except Exception:
        logger.debug("health_monitor.record_call failed", exc_info=True)


# =============================================================================
# PUBLIC API
# =============================================================================

def lookup_authoritative(
    lat: float, lng: float, road_name: Optional[str] = None
) -> Optional[TrafficRecord]:
    """Measured AADT for the road at (lat, lng), or None."""
    if not TRAFFIC_COUNTS_URL:
        return None

    params = {
        "where": "1=1",
        "geometry": (
            f"{lng - ENVELOPE_HALF_DEG},{lat - ENVELOPE_HALF_DEG},"
            f"{lng + ENVELOPE_HALF_DEG},{lat + ENVELOPE_HALF_DEG}"
        ),
        "geometryType": "esriGeometryEnvelope",
        "inSR": "4326",
        "spatialRel": "esriSpatialRelIntersects",
        "outFields": OUT_FIELDS,
        "returnGeometry": "false",
        "f": "json",
    }

    t0 = time.time()
    try:
        resp = requests.get(
            TRAFFIC_COUNTS_URL, params=params, timeout=TRAFFIC_COUNTS_TIMEOUT
        )
    except requests.exceptions.Timeout:
        _record_api(t0, 0, "timeout")
        logger.warning("Traffic count lookup timed out at %.5f,%.5f", lat, lng)
        return None
    except requests.exceptions.RequestException:
        _record_api(t0, 0, "exception")
        logger.warning("Traffic count lookup failed at %.5f,%.5f", lat, lng, exc_info=True)
        return None

    if resp.status_code != 200:
        _record_api(t0, resp.status_code, "http_error")
        logger.warning("Traffic count service returned HTTP %d", resp.status_code)
        return None

    try:
        data = resp.json()
    except ValueError:
        _record_api(t0, resp.status_code, "parse_error")
        logger.warning("Traffic count service returned non-JSON body")
        return None

    if not isinstance(data, dict) or "error" in data:
        _record_api(t0, resp.status_code, "body_error")
        logger.warning(
            "Traffic count service error: %s",
            str(data.get("error") if isinstance(data, dict) else data)[:200],
        )
        return None

    _record_api(t0, resp.status_code, "ok")
    record = pick_best_record(data.get("features") or [], road_name)
    if record:
        logger.info(
            "Authoritative count for %s: %d vpd (%d, record %r)",
            road_name or "?", record.vpd, record.year, record.road_name,
        )
    return record


def estimate_from_classification(highway_class: Optional[str]) -> TrafficRecord:
    """Average VPD for an OSM highway class (unknown → unclassified)."""
    vpd = ESTIMATED_VPD.get(highway_class or "", ESTIMATED_VPD[DEFAULT_CLASS])
    return TrafficRecord(vpd=vpd, year=0, source=TrafficSource.ESTIMATED)


def resolve_traffic(
    lat: float,
    lng: float,
    road_name: Optional[str],
    highway_class: Optional[str],
    lookup: Optional[Callable[..., Optional[TrafficRecord]]] = None,
) -> TrafficRecord:
    """Authoritative count if one matches, otherwise the class estimate."""
    lookup = lookup or lookup_authoritative
    try:
        record = lookup(lat, lng, road_name)
    except Exception:
        logger.warning(
            "Authoritative traffic lookup raised for %s; using estimate",
            road_name, exc_info=True,
        )
        record = None
    if record is not None:
        return record
    return estimate_from_classification(highway_class)
