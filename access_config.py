"""
Access-point resolver configuration.

Owns every distance / area threshold that changes which access points a
parcel gets.  Gateway settings (endpoints, timeouts) are environment-driven
and live with the gateways.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ResolverConfig:
    """Thresholds for the three detection passes and the search radius.

    A single module-level instance (RESOLVER_CONFIG) is the source of truth.
    Bump `version` on every change that alters resolver output.
    """
    version: str

    # Below this area the outline is taken to be a building footprint, not
    # the lot, and is buffered before matching.
    small_parcel_area_m2: float = 500.0
    small_parcel_buffer_m: float = 20.0

    # Road vertices this close to the boundary count as access candidates.
    proximity_max_m: float = 20.0

    # Nearest-point fallback acceptance distance.
    fallback_max_m: float = 30.0

    # Decimal places used to recognise the same location twice (5 ≈ 1 m).
    dedup_precision: int = 5

    # Overpass search radius: farthest parcel vertex from the query point
    # plus margin, never less than the minimum.
    min_search_radius_m: float = 100.0
    search_margin_m: float = 50.0


RESOLVER_CONFIG = ResolverConfig(version="1.0.0")
