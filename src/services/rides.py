"""
Ride intake and the pooling entry point.

``request_ride`` records the request as ``pending`` first and only then
tries to pool it.  Pooling is best-effort relative to ride creation: if the
store is unavailable or the conflict budget runs out, the ride stays
``pending`` and the reaper re-matches it later.

Pricing runs after pool membership is final and never rolls back the
pooling decision.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.domain.entities import Pool, Ride, utcnow
from src.domain.errors import Conflict, ConstraintViolation, NotFound, UpstreamUnavailable
from src.domain.geometry import Location, haversine_km
from src.domain.pricing import PriceBreakdown, PricingEngine
from src.infrastructure.database import unit_of_work
from src.infrastructure.repositories import RideRepository
from src.services.matcher import PoolMatcher
from src.services.mutator import PoolMutator

logger = logging.getLogger(__name__)


class RideService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        matcher: PoolMatcher,
        mutator: PoolMutator,
        pricing: PricingEngine,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.matcher = matcher
        self.mutator = mutator
        self.pricing = pricing
        self.settings = settings

    async def request_ride(
        self,
        *,
        passenger_id: int,
        pickup: Location,
        dropoff: Location,
        luggage_count: int,
        idempotency_key: Optional[str] = None,
    ) -> Ride:
        if not 0 <= luggage_count <= self.settings.max_luggage_per_ride:
            raise ConstraintViolation(
                f"Luggage count must be between 0 and {self.settings.max_luggage_per_ride}"
            )
        if idempotency_key:
            existing = await self._find_by_idempotency_key(idempotency_key)
            if existing:
                return existing

        try:
            async with unit_of_work(self.session_factory) as session:
                ride = await RideRepository(session).create(
                    passenger_id=passenger_id,
                    pickup=pickup,
                    dropoff=dropoff,
                    luggage_count=luggage_count,
                    distance_km=haversine_km(pickup, dropoff),
                    idempotency_key=idempotency_key,
                )
        except IntegrityError:
            if not idempotency_key:
                raise
            # Lost a race with a retry carrying the same key.
            existing = await self._find_by_idempotency_key(idempotency_key)
            if existing is None:
                raise
            return existing

        logger.info("Ride %s requested by passenger %s", ride.id, passenger_id)
        pooled = await self.pool_ride(ride)
        return pooled or ride

    async def pool_ride(self, ride: Ride) -> Optional[Ride]:
        """
        Match *ride* into a pool and price it.  Returns the fresh ride, or
        ``None`` when pooling was deferred and the ride stays pending.
        """
        try:
            pool = await self.matcher.find_or_create_pool(ride)
        except (UpstreamUnavailable, Conflict) as exc:
            logger.warning(
                "Pooling deferred for ride %s, left pending: %s", ride.id, exc.message
            )
            return None

        await self._price(ride, pool)
        try:
            return await self.get_ride(ride.id)
        except UpstreamUnavailable:
            return None

    async def _price(self, ride: Ride, pool: Pool) -> None:
        try:
            async with unit_of_work(self.session_factory) as session:
                rides = RideRepository(session)
                recent = await rides.count_recent_nearby(
                    ride.pickup,
                    self.settings.demand_radius_km,
                    utcnow() - timedelta(minutes=self.settings.demand_window_minutes),
                )
                price = self.pricing.price(
                    ride.distance_km,
                    len(pool.ride_ids),
                    ride.luggage_count,
                    self.pricing.demand_multiplier(recent),
                )
                current = await rides.get(ride.id)
                if current is not None and current.estimated_price is None:
                    await rides.try_set_estimated_price(current, price)
        except Exception:
            logger.exception("Pricing failed for ride %s; pooling kept", ride.id)

    async def _find_by_idempotency_key(self, key: str) -> Optional[Ride]:
        async with unit_of_work(self.session_factory) as session:
            return await RideRepository(session).get_by_idempotency_key(key)

    async def get_ride(self, ride_id: int) -> Ride:
        async with unit_of_work(self.session_factory) as session:
            ride = await RideRepository(session).get(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found", ride_id=ride_id)
        return ride

    async def cancel_ride(self, ride_id: int) -> Ride:
        return await self.mutator.cancel_ride(ride_id)

    async def estimate(
        self, pickup: Location, dropoff: Location, luggage_count: int
    ) -> PriceBreakdown:
        """Solo-rider quote before pooling, demand-adjusted."""
        async with unit_of_work(self.session_factory) as session:
            recent = await RideRepository(session).count_recent_nearby(
                pickup,
                self.settings.demand_radius_km,
                utcnow() - timedelta(minutes=self.settings.demand_window_minutes),
            )
        return self.pricing.estimate(
            haversine_km(pickup, dropoff),
            luggage_count,
            self.pricing.demand_multiplier(recent),
        )

    async def pending_rides(self, older_than: timedelta, limit: int = 100) -> list[Ride]:
        async with unit_of_work(self.session_factory) as session:
            return await RideRepository(session).get_pending_before(
                utcnow() - older_than, limit
            )
