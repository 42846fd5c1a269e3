"""
Geometry utilities: great-circle distance, centroid, bounding box.

Assumption
----------
We use great-circle (Haversine) distance instead of a real routing engine
(OSRM / Google Maps).  Every "distance" and "detour" in this service is a
straight-line approximation.

Complexity: O(1) for ``haversine_km``, O(n) for the aggregate helpers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

EARTH_RADIUS_KM = 6_371.0


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


def haversine_km(a: Location, b: Location) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(a.latitude), math.radians(b.latitude)
    dlat = math.radians(b.latitude - a.latitude)
    dlng = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def centroid(points: Iterable[Location]) -> Location:
    """Arithmetic mean of each axis.  Raises ``ValueError`` on empty input."""
    pts = list(points)
    if not pts:
        raise ValueError("centroid of an empty point set is undefined")
    return Location(
        latitude=sum(p.latitude for p in pts) / len(pts),
        longitude=sum(p.longitude for p in pts) / len(pts),
    )


def bounding_box(points: Iterable[Location]) -> BoundingBox:
    pts = list(points)
    if not pts:
        raise ValueError("bounding box of an empty point set is undefined")
    lats = [p.latitude for p in pts]
    lngs = [p.longitude for p in pts]
    return BoundingBox(
        min_lat=min(lats), max_lat=max(lats), min_lng=min(lngs), max_lng=max(lngs)
    )
