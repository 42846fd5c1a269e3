"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Goes through the real services, so every pool obeys the same seat,
luggage and detour rules as live traffic.  Creates:
  - 2 forming pools at Delhi airport (T3 and T1 kerbs)
  - 1 confirmed pool
  - 1 completed trip with settled prices
  - 1 cancelled ride
  - 1 pending ride (skips the matcher; the reaper will pool it)
"""

import asyncio

from src.config import Settings
from src.domain.enums import PoolStatus
from src.domain.geometry import Location, haversine_km
from src.domain.pricing import PricingEngine
from src.infrastructure.database import build_engine, build_session_factory, unit_of_work
from src.infrastructure.repositories import RideRepository
from src.services.lifecycle import PoolLifecycle
from src.services.matcher import PoolMatcher
from src.services.mutator import PoolMutator
from src.services.rides import RideService

# Delhi airport kerbs (approx)
T3 = Location(28.5550, 77.0880, "IGI Terminal 3 Arrivals")
T1 = Location(28.5665, 77.1210, "IGI Terminal 1 Arrivals")

DESTINATIONS = {
    "Connaught Place": Location(28.6315, 77.2167, "Connaught Place"),
    "Karol Bagh": Location(28.6519, 77.1909, "Karol Bagh"),
    "Gurugram Cyber City": Location(28.4950, 77.0895, "Cyber City"),
    "Noida Sector 18": Location(28.5708, 77.3261, "Noida Sector 18"),
    "Saket": Location(28.5245, 77.2066, "Saket"),
}

# (passenger_id, pickup, destination, luggage)
REQUESTS = [
    (101, T3, "Connaught Place", 1),
    (102, T3, "Connaught Place", 2),
    (103, T3, "Karol Bagh", 1),
    (104, T1, "Saket", 0),
    (105, T1, "Saket", 1),
    (106, T3, "Gurugram Cyber City", 2),
    (107, T1, "Noida Sector 18", 3),
    (108, T3, "Gurugram Cyber City", 1),
]


async def seed(settings: Settings) -> None:
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    pricing = PricingEngine(
        base_fare=settings.base_fare,
        rate_per_km=settings.rate_per_km,
        luggage_fee=settings.luggage_fee,
        max_demand_multiplier=settings.max_demand_multiplier,
        shared_discount=settings.shared_discount,
    )
    mutator = PoolMutator(session_factory, settings)
    matcher = PoolMatcher(session_factory, mutator, settings)
    lifecycle = PoolLifecycle(session_factory, mutator, pricing, settings)
    rides = RideService(session_factory, matcher, mutator, pricing, settings)

    try:
        # ── Pooled requests ───────────────────────────────────────────
        created = []
        for passenger_id, pickup, destination, luggage in REQUESTS:
            ride = await rides.request_ride(
                passenger_id=passenger_id,
                pickup=pickup,
                dropoff=DESTINATIONS[destination],
                luggage_count=luggage,
            )
            created.append(ride)
            print(f"  Ride {ride.id}: {pickup.address} -> {destination} (pool {ride.pool_id})")

        pool_ids = list(dict.fromkeys(r.pool_id for r in created if r.pool_id))
        print(f"  Formed {len(pool_ids)} pools")

        # ── Advance a couple of pools ─────────────────────────────────
        confirmed, completed = pool_ids[-1], pool_ids[-2]
        await lifecycle.advance(confirmed, PoolStatus.CONFIRMED)
        print(f"  Pool {confirmed} confirmed")

        for status in (PoolStatus.CONFIRMED, PoolStatus.IN_PROGRESS, PoolStatus.COMPLETED):
            await lifecycle.advance(completed, status)
        print(f"  Pool {completed} completed")

        # ── Cancellation ──────────────────────────────────────────────
        cancelled = await rides.request_ride(
            passenger_id=109, pickup=T1, dropoff=DESTINATIONS["Saket"], luggage_count=1
        )
        await rides.cancel_ride(cancelled.id)
        print(f"  Ride {cancelled.id} cancelled")

        # ── Pending ride for the reaper ───────────────────────────────
        async with unit_of_work(session_factory) as session:
            pending = await RideRepository(session).create(
                passenger_id=110,
                pickup=T3,
                dropoff=DESTINATIONS["Karol Bagh"],
                luggage_count=1,
                distance_km=haversine_km(T3, DESTINATIONS["Karol Bagh"]),
            )
        print(f"  Ride {pending.id} left pending")

        print("\nSeed complete!")
    finally:
        await engine.dispose()


async def main():
    print("Seeding database...")
    await seed(Settings())


if __name__ == "__main__":
    asyncio.run(main())
