"""
Background Expiry Reaper
========================

Runs every ``REAPER_INTERVAL_SECONDS`` (default 30 s).

Readers already treat a forming pool past ``expires_at`` as gone; the
reaper makes that physical and puts the stranded riders back in play.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple API processes.
* Each expiry is a conditional write; a pool that changed since it was
  read raises ``Conflict`` and is simply picked up by the next sweep.

Sweep
-----
1. Expire forming pools past their deadline; their rides return to
   ``pending`` (see the lifecycle module for the policy).
2. Re-match ``pending`` rides older than ``PENDING_REMATCH_AFTER_SECONDS``
   -- riders released in step 1 and requests whose pooling was deferred.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.domain.entities import utcnow
from src.domain.errors import Conflict, ConstraintViolation, InvalidState
from src.infrastructure.database import unit_of_work
from src.infrastructure.locks import DistributedLock, LockNotAcquired
from src.infrastructure.repositories import PoolRepository
from src.services.lifecycle import PoolLifecycle
from src.services.rides import RideService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired: int = 0
    released: int = 0
    rematched: int = 0


class ExpiryReaper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lifecycle: PoolLifecycle,
        ride_service: RideService,
        redis: aioredis.Redis,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.lifecycle = lifecycle
        self.ride_service = ride_service
        self.redis = redis
        self.settings = settings
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ── Public API ────────────────────────────────────────────────────

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Expiry reaper started (interval=%ds)", self.settings.reaper_interval_seconds
        )

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Expiry reaper stopped")

    async def run_cycle(self) -> SweepResult:
        """One sweep under the distributed lock."""
        try:
            async with DistributedLock(self.redis, "pool_reaper", ttl_seconds=60):
                result = await self.expire_pools()
                result.rematched = await self.rematch_pending()
        except LockNotAcquired:
            logger.debug("Lock held by another worker, skipping sweep")
            return SweepResult()

        if result.expired or result.rematched:
            logger.info(
                "Sweep: %d pools expired, %d rides released, %d rides re-matched",
                result.expired, result.released, result.rematched,
            )
        return result

    async def expire_pools(self) -> SweepResult:
        async with unit_of_work(self.session_factory) as session:
            expired = await PoolRepository(
                session, postgis=self.settings.uses_postgis
            ).list_expired_forming(utcnow())

        result = SweepResult()
        for pool in expired:
            try:
                released = await self.lifecycle.expire_pool(pool)
            except Conflict as exc:
                logger.info("Pool %s changed during expiry, deferring: %s", pool.id, exc.message)
                continue
            result.expired += 1
            result.released += len(released)
        return result

    async def rematch_pending(self) -> int:
        pending = await self.ride_service.pending_rides(
            timedelta(seconds=self.settings.pending_rematch_after_seconds)
        )
        rematched = 0
        for ride in pending:
            try:
                if await self.ride_service.pool_ride(ride) is not None:
                    rematched += 1
            except InvalidState as exc:
                logger.info("Ride %s no longer pending: %s", ride.id, exc.message)
            except ConstraintViolation as exc:
                logger.warning("Ride %s cannot be pooled: %s", ride.id, exc.message)
        return rematched

    # ── Internals ─────────────────────────────────────────────────────

    async def _loop(self) -> None:
        """Periodic loop: run a sweep then sleep."""
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Unhandled error in reaper sweep")
            # Wait for the interval or until stop is signalled
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.settings.reaper_interval_seconds
                )
                break
            except asyncio.TimeoutError:
                pass  # next sweep
