"""
Error taxonomy for the pooling core.

Every error carries enough context (ride id, pool id, last versions seen)
for a client to retry idempotently.  ``retryable`` tells the API layer
whether the same request may simply be sent again.
"""

from __future__ import annotations

from typing import Optional


class PoolingError(Exception):
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        ride_id: Optional[int] = None,
        pool_id: Optional[int] = None,
        ride_version: Optional[int] = None,
        pool_version: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.ride_id = ride_id
        self.pool_id = pool_id
        self.ride_version = ride_version
        self.pool_version = pool_version

    def context(self) -> dict:
        return {
            "ride_id": self.ride_id,
            "pool_id": self.pool_id,
            "ride_version": self.ride_version,
            "pool_version": self.pool_version,
            "retryable": self.retryable,
        }


class NotFound(PoolingError):
    """Ride or pool id is unknown."""


class InvalidState(PoolingError):
    """The requested change is illegal in the entity's current status."""


class Conflict(PoolingError):
    """Optimistic version mismatch: another writer won the race."""

    retryable = True


class ConstraintViolation(PoolingError):
    """Joining would exceed the pool's seat or luggage capacity."""


class UpstreamUnavailable(PoolingError):
    """The pool store or the pricing collaborator could not be reached."""

    retryable = True
