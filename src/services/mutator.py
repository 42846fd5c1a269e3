"""
Concurrency-Safe Pool Mutator
=============================

Every state change to a pool goes through here.

Protocol (optimistic concurrency, single-writer-wins)
-----------------------------------------------------
* The caller hands in *snapshots* (``Pool`` / ``Ride``) carrying the
  ``version`` they were read at.
* Each write is a conditional ``UPDATE`` guarded by that version plus the
  business guards (status, headroom, expiry).  Zero rows affected means
  another writer won: we raise ``Conflict`` instead of re-applying blindly,
  because the pool's headroom may be gone.
* Multi-record changes (ride + pool) share one transaction.  Row locks are
  always taken ride(s) first, pool second.
* Centroid / bounding-box refresh runs *after* the commit and is
  best-effort; seat and luggage accounting never lag.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.domain.entities import Pool, Ride, utcnow
from src.domain.enums import DETACHABLE_POOL_STATUSES, PoolStatus, RideStatus
from src.domain.errors import (
    Conflict,
    ConstraintViolation,
    InvalidState,
    NotFound,
    UpstreamUnavailable,
)
from src.domain.geometry import bounding_box, centroid
from src.domain.matching import can_accept, location_h3_cell
from src.infrastructure.database import unit_of_work
from src.infrastructure.repositories import PoolRepository, RideRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PoolMutator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.settings = settings

    def _pools(self, session: AsyncSession) -> PoolRepository:
        return PoolRepository(session, postgis=self.settings.uses_postgis)

    # ── Join ──────────────────────────────────────────────────────────

    async def join(self, pool: Pool, ride: Ride) -> Pool:
        """
        Attach *ride* to *pool* in one attempt.

        Raises ``ConstraintViolation`` if the snapshot already shows no
        headroom, ``Conflict`` if the pool moved on since it was read, and
        ``InvalidState`` if the ride is no longer pending.
        """
        max_seats = self.settings.max_seats_per_pool
        max_luggage = self.settings.max_luggage_per_pool
        now = utcnow()

        if pool.status != PoolStatus.FORMING or pool.is_expired(now):
            raise ConstraintViolation(
                "Pool no longer accepts riders",
                ride_id=ride.id,
                pool_id=pool.id,
                pool_version=pool.version,
            )
        if not can_accept(pool, ride, max_seats, max_luggage):
            raise ConstraintViolation(
                "Pool has no seat or luggage headroom",
                ride_id=ride.id,
                pool_id=pool.id,
                pool_version=pool.version,
            )

        async with unit_of_work(self.session_factory) as session:
            rides = RideRepository(session)
            pools = self._pools(session)

            if not await rides.try_mark_pooled(ride, pool.id):
                await self._raise_ride_moved(rides, ride, pool)

            if not await pools.try_join(
                pool, ride, max_seats=max_seats, max_luggage=max_luggage, now=now
            ):
                raise Conflict(
                    "Pool was modified by another request",
                    ride_id=ride.id,
                    pool_id=pool.id,
                    ride_version=ride.version,
                    pool_version=pool.version,
                )
            joined = await pools.get(pool.id)

        logger.info(
            "Ride %s joined pool %s (seats=%d, luggage=%d, v%d)",
            ride.id, joined.id, joined.seats_occupied, joined.luggage_total, joined.version,
        )
        await self.refresh_geometry(joined)
        return joined

    async def _raise_ride_moved(
        self, rides: RideRepository, ride: Ride, pool: Optional[Pool] = None
    ) -> None:
        current = await rides.get(ride.id)
        pool_id = pool.id if pool else None
        if current is None:
            raise NotFound(f"Ride {ride.id} not found", ride_id=ride.id, pool_id=pool_id)
        if current.status != RideStatus.PENDING:
            raise InvalidState(
                f"Ride is {current.status.value}, not pending",
                ride_id=ride.id,
                pool_id=pool_id,
                ride_version=current.version,
            )
        raise Conflict(
            "Ride was modified by another request",
            ride_id=ride.id,
            pool_id=pool_id,
            ride_version=current.version,
        )

    # ── Create ────────────────────────────────────────────────────────

    async def create_pool(self, ride: Ride) -> Pool:
        """New pool seeded with *ride*; pool insert and ride update commit together."""
        if ride.luggage_count > self.settings.max_luggage_per_pool:
            raise ConstraintViolation(
                "Ride luggage exceeds what a single pool can carry",
                ride_id=ride.id,
                ride_version=ride.version,
            )
        now = utcnow()
        seed = Pool(
            ride_ids=[ride.id],
            status=PoolStatus.FORMING,
            seats_occupied=1,
            luggage_total=ride.luggage_count,
            centroid=centroid([ride.pickup, ride.dropoff]),
            pickup_centroid=ride.pickup,
            bounding_box=bounding_box([ride.pickup, ride.dropoff]),
            h3_cell=location_h3_cell(ride.pickup, self.settings.h3_resolution),
            max_detour_km=self.settings.max_detour_km,
            created_at=now,
            expires_at=now + timedelta(minutes=self.settings.pool_expiry_minutes),
        )

        async with unit_of_work(self.session_factory) as session:
            rides = RideRepository(session)
            pool = await self._pools(session).create(seed)
            if not await rides.try_mark_pooled(ride, pool.id):
                await self._raise_ride_moved(rides, ride)

        logger.info("Ride %s started pool %s (expires %s)", ride.id, pool.id, pool.expires_at)
        return pool

    # ── Cancel ────────────────────────────────────────────────────────

    async def cancel_ride(self, ride_id: int) -> Ride:
        """Cancel a ride, detaching it from its pool.  Retries on ``Conflict``."""
        return await self.with_retry(lambda: self._cancel_once(ride_id), ride_id=ride_id)

    async def _cancel_once(self, ride_id: int) -> Ride:
        now = utcnow()
        pool: Optional[Pool] = None

        async with unit_of_work(self.session_factory) as session:
            rides = RideRepository(session)
            pools = self._pools(session)

            ride = await rides.get(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found", ride_id=ride_id)
            if ride.is_terminal:
                raise InvalidState(
                    f"Cannot cancel ride in status {ride.status.value}",
                    ride_id=ride.id,
                    pool_id=ride.pool_id,
                    ride_version=ride.version,
                )

            if ride.pool_id is not None:
                pool = await pools.get(ride.pool_id)
                if pool is not None and pool.status not in DETACHABLE_POOL_STATUSES:
                    raise InvalidState(
                        f"Cannot leave a pool that is {pool.status.value}",
                        ride_id=ride.id,
                        pool_id=pool.id,
                        ride_version=ride.version,
                        pool_version=pool.version,
                    )

            if not await rides.try_mark_cancelled(ride, now):
                raise Conflict(
                    "Ride was modified by another request",
                    ride_id=ride.id,
                    pool_id=ride.pool_id,
                    ride_version=ride.version,
                )

            if pool is not None and ride.id in pool.ride_ids:
                if not await pools.try_leave(pool, ride):
                    raise Conflict(
                        "Pool was modified by another request",
                        ride_id=ride.id,
                        pool_id=pool.id,
                        ride_version=ride.version,
                        pool_version=pool.version,
                    )
                pool = await pools.get(pool.id)

            cancelled = await rides.get(ride_id)

        logger.info("Ride %s cancelled (left pool %s)", ride_id, pool.id if pool else None)
        if pool is not None and pool.ride_ids:
            await self.refresh_geometry(pool)
        return cancelled

    # ── Geometry ──────────────────────────────────────────────────────

    async def refresh_geometry(self, pool: Pool) -> bool:
        """
        Recompute centroid, bounding box, pickup centroid and H3 cell from
        the member set of *pool*'s snapshot.  Skipped when the pool has moved
        past that version -- the newer writer refreshes it instead.
        """
        try:
            async with unit_of_work(self.session_factory) as session:
                found = await RideRepository(session).get_many(pool.ride_ids)
                members = [found[rid] for rid in pool.ride_ids if rid in found]
                if not members:
                    return False

                pickups = [r.pickup for r in members]
                points = pickups + [r.dropoff for r in members]
                pickup_center = centroid(pickups)
                applied = await self._pools(session).try_update_geometry(
                    pool,
                    centroid=centroid(points),
                    pickup_centroid=pickup_center,
                    bbox=bounding_box(points),
                    h3_cell=location_h3_cell(pickup_center, self.settings.h3_resolution),
                )
        except UpstreamUnavailable:
            logger.warning("Geometry refresh for pool %s deferred: store unavailable", pool.id)
            return False

        if not applied:
            logger.debug("Geometry refresh for pool %s v%d skipped: stale", pool.id, pool.version)
        return applied

    # ── Retry ─────────────────────────────────────────────────────────

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        ride_id: Optional[int] = None,
        pool_id: Optional[int] = None,
    ) -> T:
        """
        Run *operation* up to ``mutation_retry_attempts`` times, backing off
        exponentially between ``Conflict`` outcomes.  Each attempt re-reads
        state, so a retry re-decides rather than replaying the same write.
        """
        attempts = self.settings.mutation_retry_attempts
        last: Optional[Conflict] = None
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Conflict as exc:
                last = exc
                if attempt == attempts:
                    break
                delay = self.settings.retry_backoff_seconds * 2 ** (attempt - 1)
                logger.info(
                    "Conflict on attempt %d/%d (ride=%s pool=%s); retrying in %.3fs",
                    attempt, attempts, exc.ride_id, exc.pool_id, delay,
                )
                await asyncio.sleep(delay)

        raise Conflict(
            f"Gave up after {attempts} conflicting attempts",
            ride_id=last.ride_id if last else ride_id,
            pool_id=last.pool_id if last else pool_id,
            ride_version=last.ride_version if last else None,
            pool_version=last.pool_version if last else None,
        ) from last
