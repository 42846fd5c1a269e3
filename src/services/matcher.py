"""
Pool Matcher
============

``find_or_create_pool`` is called exactly once per accepted ride request.

Algorithm
---------
1. Fetch at most K candidate pools (forming, free seat, unexpired, pickup
   centroid within R of the ride pickup), fuller and older first.
2. Greedy pick: smallest detour within each pool's bound; ties go to the
   first candidate in sort order (see ``choose_best_pool``).
3. Join the winner through the mutator.  On ``Conflict`` or
   ``ConstraintViolation`` re-run the *whole* selection against fresh
   candidates -- the winner may have filled up in the meantime.
4. No winner, or retry budget spent: start a new pool.

No lock is held during the candidate search; the only synchronisation
point is the mutator's conditional write.

Complexity: O(K x MAX_SEATS) per attempt, independent of ride volume.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.domain.entities import Pool, Ride, utcnow
from src.domain.errors import Conflict, ConstraintViolation
from src.domain.matching import choose_best_pool
from src.infrastructure.database import unit_of_work
from src.infrastructure.repositories import PoolRepository, RideRepository
from src.services.mutator import PoolMutator

logger = logging.getLogger(__name__)


class PoolMatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mutator: PoolMutator,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.mutator = mutator
        self.settings = settings

    async def find_or_create_pool(self, ride: Ride) -> Pool:
        attempts = self.settings.match_retry_attempts

        for attempt in range(1, attempts + 1):
            choice = await self.select_candidate(ride)
            if choice is None:
                break

            pool, detour = choice
            try:
                return await self.mutator.join(pool, ride)
            except (Conflict, ConstraintViolation) as exc:
                logger.info(
                    "Ride %s lost pool %s (detour %.2f km) on attempt %d/%d: %s",
                    ride.id, pool.id, detour, attempt, attempts, exc.message,
                )
        else:
            logger.warning(
                "Ride %s exhausted %d match attempts; starting a new pool",
                ride.id, attempts,
            )

        return await self.mutator.create_pool(ride)

    async def select_candidate(self, ride: Ride) -> Optional[tuple[Pool, float]]:
        """Read-only: the best pool for *ride* right now, with its detour."""
        async with unit_of_work(self.session_factory) as session:
            candidates = await PoolRepository(
                session, postgis=self.settings.uses_postgis
            ).find_candidates(
                ride.pickup,
                radius_km=self.settings.candidate_search_radius_km,
                limit=self.settings.candidate_limit,
                max_seats=self.settings.max_seats_per_pool,
                now=utcnow(),
                resolution=self.settings.h3_resolution,
            )
            found = await RideRepository(session).get_many(
                rid for pool in candidates for rid in pool.ride_ids
            )

        members = {
            pool.id: [found[rid] for rid in pool.ride_ids if rid in found]
            for pool in candidates
        }
        choice = choose_best_pool(
            candidates,
            members,
            ride,
            self.settings.max_seats_per_pool,
            self.settings.max_luggage_per_pool,
        )
        logger.debug(
            "Ride %s: %d candidates, choice=%s",
            ride.id, len(candidates), choice[0].id if choice else None,
        )
        return choice
