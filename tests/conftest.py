"""Shared fixtures for the siteaccess test suite.

Provides a Flask test client and small builders for parcels and roads
laid out in metres around a fixed centre point.
"""

import math
import os

import pytest

# Keep the authoritative traffic tier off and rate limits out of the way
# BEFORE importing app (both are read at import time).
os.environ["TRAFFIC_COUNTS_URL"] = ""
os.environ.setdefault("RATE_LIMIT_ANALYZE", "1000/minute")
os.environ.setdefault("RATE_LIMIT_DEFAULT", "1000/minute")

from app import app  # noqa: E402
from geometry import METERS_PER_DEGREE  # noqa: E402
from road_network import RoadSegment  # noqa: E402

CENTER = (28.5383, -81.3792)


def _offset(east_m, north_m, center=CENTER):
    lat0, lng0 = center
    return (
        lat0 + north_m / METERS_PER_DEGREE,
        lng0 + east_m / (METERS_PER_DEGREE * math.cos(math.radians(lat0))),
    )


@pytest.fixture
def offset():
    """offset(east_m, north_m) -> (lat, lng) relative to CENTER."""
    return _offset


@pytest.fixture
def square():
    """square(half_side_m) -> open 4-vertex ring centred on CENTER (CCW)."""
    def _square(half_side_m, center=CENTER):
        h = half_side_m
        return [
            _offset(-h, -h, center),
            _offset(h, -h, center),
            _offset(h, h, center),
            _offset(-h, h, center),
        ]
    return _square


@pytest.fixture
def road():
    """road(points_m, name=..., highway_class=...) built from metre offsets."""
    counter = {"id": 0}

    def _road(points_m, name="Main St", highway_class="residential", ref=None,
              service_subtype=None):
        counter["id"] += 1
        return RoadSegment(
            id=counter["id"],
            nodes=[_offset(e, n) for e, n in points_m],
            highway_class=highway_class,
            name=name,
            ref=ref,
            service_subtype=service_subtype,
        )
    return _road


@pytest.fixture()
def client():
    """Flask test client."""
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
