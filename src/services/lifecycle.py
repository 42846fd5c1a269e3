"""
Pool Lifecycle
==============

States::

    forming ──> confirmed ──> in_progress ──> completed
       │            │
       └──> cancelled <┘

* ``forming`` is the only state that accepts joins.
* Expiry is a *logical* predicate (``Pool.is_expired``): a forming pool past
  ``expires_at`` is invalid for every reader before the reaper touches it.
* Discarding a pool (expiry or cancellation) returns its pooled rides to
  ``pending``; the reaper's next pass re-matches them.
* Completing a pool completes its pooled rides and settles their price.

Every transition is a conditional write; rides are updated before the pool
inside the same transaction.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.domain.entities import Pool, Ride, utcnow
from src.domain.enums import PoolStatus
from src.domain.errors import Conflict, InvalidState, NotFound
from src.domain.pricing import PricingEngine
from src.infrastructure.database import unit_of_work
from src.infrastructure.repositories import PoolRepository, RideRepository
from src.services.mutator import PoolMutator

logger = logging.getLogger(__name__)


class PoolLifecycle:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mutator: PoolMutator,
        pricing: PricingEngine,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.mutator = mutator
        self.pricing = pricing
        self.settings = settings

    def _pools(self, session: AsyncSession) -> PoolRepository:
        return PoolRepository(session, postgis=self.settings.uses_postgis)

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_pool(self, pool_id: int) -> tuple[Pool, list[Ride]]:
        """The pool and its members in join order."""
        async with unit_of_work(self.session_factory) as session:
            pool = await self._pools(session).get(pool_id)
            if pool is None:
                raise NotFound(f"Pool {pool_id} not found", pool_id=pool_id)
            found = await RideRepository(session).get_many(pool.ride_ids)
        return pool, [found[rid] for rid in pool.ride_ids if rid in found]

    async def list_forming(self) -> list[tuple[Pool, list[Ride]]]:
        async with unit_of_work(self.session_factory) as session:
            pools = await self._pools(session).list_forming(utcnow())
            found = await RideRepository(session).get_many(
                rid for pool in pools for rid in pool.ride_ids
            )
        return [
            (pool, [found[rid] for rid in pool.ride_ids if rid in found])
            for pool in pools
        ]

    # ── Transitions ───────────────────────────────────────────────────

    async def advance(
        self,
        pool_id: int,
        new_status: PoolStatus,
        actual_distances_km: Optional[Mapping[int, float]] = None,
    ) -> Pool:
        return await self.mutator.with_retry(
            lambda: self._advance_once(pool_id, new_status, actual_distances_km or {}),
            pool_id=pool_id,
        )

    async def _advance_once(
        self,
        pool_id: int,
        new_status: PoolStatus,
        actual_distances_km: Mapping[int, float],
    ) -> Pool:
        now = utcnow()
        async with unit_of_work(self.session_factory) as session:
            rides = RideRepository(session)
            pools = self._pools(session)

            pool = await pools.get(pool_id)
            if pool is None:
                raise NotFound(f"Pool {pool_id} not found", pool_id=pool_id)
            if pool.is_expired(now) and new_status != PoolStatus.CANCELLED:
                raise InvalidState(
                    "Pool expired before it was confirmed",
                    pool_id=pool.id,
                    pool_version=pool.version,
                )
            if not pool.can_transition_to(new_status):
                raise InvalidState(
                    f"Cannot move pool from {pool.status.value} to {new_status.value}",
                    pool_id=pool.id,
                    pool_version=pool.version,
                )

            stamps: dict = {}
            if new_status == PoolStatus.CONFIRMED:
                stamps["confirmed_at"] = now
            elif new_status == PoolStatus.COMPLETED:
                stamps["completed_at"] = now
                await self._complete_members(rides, pool, now, actual_distances_km)
            elif new_status == PoolStatus.CANCELLED:
                released = await rides.release_pool(pool.id)
                logger.info("Pool %s cancelled; rides %s back to pending", pool.id, released)
                stamps.update(ride_ids=[], seats_occupied=0, luggage_total=0)

            if not await pools.try_transition(pool, new_status, **stamps):
                raise Conflict(
                    "Pool was modified by another request",
                    pool_id=pool.id,
                    pool_version=pool.version,
                )
            updated = await pools.get(pool.id)

        logger.info("Pool %s: %s -> %s", pool_id, pool.status.value, new_status.value)
        return updated

    async def _complete_members(
        self,
        rides: RideRepository,
        pool: Pool,
        now,
        actual_distances_km: Mapping[int, float],
    ) -> None:
        for ride in await rides.get_in_pool(pool.id):
            actual_price = None
            if ride.estimated_price is not None:
                actual_price = self.pricing.final_price(
                    ride.estimated_price,
                    ride.distance_km,
                    actual_distances_km.get(ride.id, ride.distance_km),
                )
            if not await rides.try_mark_completed(ride, now, actual_price):
                raise Conflict(
                    "Ride was modified by another request",
                    ride_id=ride.id,
                    pool_id=pool.id,
                    ride_version=ride.version,
                )

    async def expire_pool(self, pool: Pool) -> list[int]:
        """
        Discard a forming pool past its deadline; returns the ride ids sent
        back to ``pending``.  ``Conflict`` if the pool changed since read.
        """
        now = utcnow()
        async with unit_of_work(self.session_factory) as session:
            released = await RideRepository(session).release_pool(pool.id)
            if not await self._pools(session).try_expire(pool, now):
                raise Conflict(
                    "Pool changed before it could be expired",
                    pool_id=pool.id,
                    pool_version=pool.version,
                )

        logger.info("Pool %s expired; rides %s back to pending", pool.id, released)
        return released
