"""
Redis-based distributed lock.

Guards the expiry reaper so only one API process sweeps expired pools at a
time.  The pooling core itself never takes this lock: joins and
cancellations are synchronised by conditional writes alone.

Implementation uses SET NX EX for acquire and a Lua script for
atomic check-and-delete on release.
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    """Another holder owns the lock."""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"ridepool:lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        acquired = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        if not acquired:
            logger.debug("Lock %s held elsewhere", self.key)
        return acquired

    async def release(self) -> bool:
        """Release only if we still own the lock (atomic via Lua)."""
        released = bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))
        if not released:
            logger.warning("Lock %s expired before release", self.key)
        return released

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
