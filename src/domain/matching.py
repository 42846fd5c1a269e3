"""
Local-Greedy Pool Matching
==========================

1. **Spatial Binning**  -- H3 hexagons (resolution 7 by default) index pool
   pickup centroids; a ride only looks at cells within the search radius.
2. **Constraint Check** -- ``can_accept``: seat and luggage headroom.
3. **Detour Estimate**  -- ``detour_km``: centroid-spread of pickups and of
   drop-offs if the ride joins.
4. **Greedy Selection** -- ``choose_best_pool``: smallest detour within the
   pool's bound wins; first candidate in sort order wins ties.

Detour model
------------
  spread(points)  = max distance from centroid(points) to any point
  detour          = (spread(pickups + new) + spread(dropoffs + new)) / 2

This is a proxy for "how much the pool's footprint grows", NOT a route
cost.  Anything that surfaces a detour value externally must say so.

Complexity
----------
K = candidate cap (20), k = pool size + 1 (<= MAX_SEATS).

* ``detour_km``:        O(k), effectively O(1)
* ``choose_best_pool``: O(K x k), bounded regardless of ride volume

**Note:** the greedy heuristic does NOT minimise global travel deviation;
an exact assignment is an integer program.  We only need a fast,
deterministic local decision per request.
"""

from __future__ import annotations

import math
from typing import Mapping, Optional, Sequence

import h3

from .entities import Pool, Ride
from .geometry import Location, centroid, haversine_km


def can_accept(pool: Pool, ride: Ride, max_seats: int, max_luggage: int) -> bool:
    """Can *pool* legally take one more rider with *ride*'s luggage?"""
    return (
        pool.seats_occupied + 1 <= max_seats
        and pool.luggage_total + ride.luggage_count <= max_luggage
    )


def spread_km(points: Sequence[Location]) -> float:
    """Max distance from the centroid of *points* to any of them."""
    if len(points) <= 1:
        return 0.0
    center = centroid(points)
    return max(haversine_km(center, p) for p in points)


def footprint_km(pickups: Sequence[Location], dropoffs: Sequence[Location]) -> float:
    """Mean of the pickup spread and the drop-off spread."""
    return (spread_km(pickups) + spread_km(dropoffs)) / 2


def detour_km(
    member_pickups: Sequence[Location],
    member_dropoffs: Sequence[Location],
    ride: Ride,
) -> float:
    """Estimated footprint (km) of the pool if *ride* joins it.  O(k)."""
    return footprint_km(
        [*member_pickups, ride.pickup], [*member_dropoffs, ride.dropoff]
    )


def choose_best_pool(
    candidates: Sequence[Pool],
    members: Mapping[int, Sequence[Ride]],
    ride: Ride,
    max_seats: int,
    max_luggage: int,
) -> Optional[tuple[Pool, float]]:
    """
    Greedy pick over *candidates* (already in preference order).

    Returns ``(pool, detour)`` or ``None`` when nothing qualifies.  Strict
    ``<`` keeps the earliest candidate on equal detours, which makes the
    choice reproducible for an identical candidate list.
    """
    best: Optional[Pool] = None
    best_detour = math.inf

    for pool in candidates:
        if not can_accept(pool, ride, max_seats, max_luggage):
            continue

        rides = members.get(pool.id, ())
        detour = detour_km(
            [r.pickup for r in rides], [r.dropoff for r in rides], ride
        )
        if detour <= pool.max_detour_km and detour < best_detour:
            best, best_detour = pool, detour

    if best is None:
        return None
    return best, best_detour


# ── Spatial binning ───────────────────────────────────────────────────


def location_h3_cell(location: Location, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(location.latitude, location.longitude, resolution)


def search_cells(location: Location, radius_km: float, resolution: int = 7) -> list[str]:
    """
    Every H3 cell that may hold a point within *radius_km* of *location*.

    Neighbouring hexagon centres are ``sqrt(3) x edge`` apart, so that many
    rings plus one (for the point's offset inside its own cell) cover the
    disc.  Callers still apply the exact haversine check.
    """
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    rings = math.ceil(radius_km / (math.sqrt(3) * edge_km)) + 1
    return list(h3.grid_disk(location_h3_cell(location, resolution), rings))
