"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  A file rather than ``:memory:`` lets several
connections contend for the same rows, which the concurrency tests rely
on.  The PostGIS proximity filter is skipped on SQLite; the H3 prefilter
and exact haversine check still apply.
"""

from datetime import timedelta
from typing import Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select, update

from src.config import Settings
from src.domain.entities import Ride, utcnow
from src.domain.enums import RideStatus
from src.domain.geometry import Location
from src.domain.pricing import PricingEngine
from src.infrastructure.database import Base, build_engine, build_session_factory, unit_of_work
from src.infrastructure.models import PoolModel, RideModel
from src.infrastructure.repositories import RideRepository
from src.services.lifecycle import PoolLifecycle
from src.services.matcher import PoolMatcher
from src.services.mutator import PoolMutator
from src.services.rides import RideService

# Delhi airport terminal kerb and a shared destination cluster ~12 km away
AIRPORT = Location(28.55, 77.10)
DESTINATION = Location(28.63, 77.18)


def near(location: Location, d_lat: float = 0.0, d_lng: float = 0.0) -> Location:
    return Location(location.latitude + d_lat, location.longitude + d_lng)


# ── Components ────────────────────────────────────────────────────────


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ridepool.db'}",
        redis_url="redis://localhost:6379/15",
        retry_backoff_seconds=0.001,
        pending_rematch_after_seconds=0,
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = build_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def pricing(settings) -> PricingEngine:
    return PricingEngine(
        base_fare=settings.base_fare,
        rate_per_km=settings.rate_per_km,
        luggage_fee=settings.luggage_fee,
        max_demand_multiplier=settings.max_demand_multiplier,
        shared_discount=settings.shared_discount,
    )


@pytest.fixture
def mutator(session_factory, settings) -> PoolMutator:
    return PoolMutator(session_factory, settings)


@pytest.fixture
def matcher(session_factory, mutator, settings) -> PoolMatcher:
    return PoolMatcher(session_factory, mutator, settings)


@pytest.fixture
def lifecycle(session_factory, mutator, pricing, settings) -> PoolLifecycle:
    return PoolLifecycle(session_factory, mutator, pricing, settings)


@pytest.fixture
def ride_service(session_factory, matcher, mutator, pricing, settings) -> RideService:
    return RideService(session_factory, matcher, mutator, pricing, settings)


@pytest.fixture
def mock_redis():
    """Redis stand-in whose lock calls always succeed."""
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=True)
    redis.eval = AsyncMock(return_value=1)
    return redis


# ── Helpers ───────────────────────────────────────────────────────────


async def insert_ride(
    session_factory,
    *,
    pickup: Location = AIRPORT,
    dropoff: Location = DESTINATION,
    luggage_count: int = 1,
    passenger_id: int = 1,
) -> Ride:
    """A ``pending`` ride that has not been through the matcher."""
    async with unit_of_work(session_factory) as session:
        return await RideRepository(session).create(
            passenger_id=passenger_id,
            pickup=pickup,
            dropoff=dropoff,
            luggage_count=luggage_count,
            distance_km=12.0,
        )


async def backdate_pool(session_factory, pool_id: int, minutes: int, ttl_minutes: int = 15):
    """Pretend *pool_id* was created *minutes* ago with the given TTL."""
    created = utcnow() - timedelta(minutes=minutes)
    async with unit_of_work(session_factory) as session:
        await session.execute(
            update(PoolModel)
            .where(PoolModel.id == pool_id)
            .values(created_at=created, expires_at=created + timedelta(minutes=ttl_minutes))
        )


async def assert_pool_invariants(session_factory, max_seats: int, pool_id: Optional[int] = None):
    """
    Seat accounting matches membership, nobody is overbooked, and every
    pooled ride sits in exactly one pool's member set exactly once.
    """
    async with session_factory() as session:
        pools = (await session.execute(select(PoolModel))).scalars().all()
        rides = {r.id: r for r in (await session.execute(select(RideModel))).scalars().all()}

    for pool in pools:
        if pool_id is not None and pool.id != pool_id:
            continue
        assert pool.seats_occupied == len(pool.ride_ids)
        assert pool.seats_occupied <= max_seats
        assert len(set(pool.ride_ids)) == len(pool.ride_ids)
        assert pool.luggage_total == sum(rides[rid].luggage_count for rid in pool.ride_ids)
        for rid in pool.ride_ids:
            assert rides[rid].status == RideStatus.POOLED
            assert rides[rid].pool_id == pool.id

    for ride in rides.values():
        if ride.status != RideStatus.POOLED:
            continue
        holders = [p.id for p in pools if ride.id in p.ride_ids]
        assert holders == [ride.pool_id]
