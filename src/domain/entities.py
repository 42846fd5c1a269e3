"""
Domain entities with business logic.

Entities are *snapshots* of store records: every one carries the
``version`` it was read at, which is the optimistic-concurrency token the
mutator hands back to the store on write.

Patterns used
-------------
- **State Pattern** on ``Ride`` and ``Pool``: enforces valid lifecycle
  transitions (see ``RIDE_TRANSITIONS`` / ``POOL_TRANSITIONS``).
- ``Pool.is_expired`` makes expiry a logical predicate that every reader
  applies, independent of the background reaper.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import POOL_TRANSITIONS, RIDE_TRANSITIONS, PoolStatus, RideStatus
from .errors import InvalidState
from .geometry import BoundingBox, Location


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class Ride:
    id: Optional[int] = None
    passenger_id: int = 0
    pickup: Location = field(default_factory=lambda: Location(0, 0))
    dropoff: Location = field(default_factory=lambda: Location(0, 0))
    luggage_count: int = 0
    status: RideStatus = RideStatus.PENDING
    pool_id: Optional[int] = None
    distance_km: float = 0.0
    estimated_price: Optional[float] = None
    actual_price: Optional[float] = None
    idempotency_key: Optional[str] = None
    version: int = 0
    requested_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return not RIDE_TRANSITIONS[self.status]

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if new_status not in RIDE_TRANSITIONS.get(self.status, set()):
            raise InvalidState(
                f"Cannot transition ride from {self.status.value} to {new_status.value}",
                ride_id=self.id,
                ride_version=self.version,
            )
        self.status = new_status


@dataclass
class Pool:
    id: Optional[int] = None
    ride_ids: list[int] = field(default_factory=list)
    status: PoolStatus = PoolStatus.FORMING
    seats_occupied: int = 0
    luggage_total: int = 0
    centroid: Optional[Location] = None
    pickup_centroid: Optional[Location] = None
    bounding_box: Optional[BoundingBox] = None
    h3_cell: Optional[str] = None
    max_detour_km: float = 3.0
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 0

    def is_expired(self, now: datetime) -> bool:
        """A forming pool past its deadline is gone, reaped or not."""
        return (
            self.status == PoolStatus.FORMING
            and self.expires_at is not None
            and self.expires_at <= now
        )

    def can_transition_to(self, new_status: PoolStatus) -> bool:
        return new_status in POOL_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: PoolStatus) -> None:
        if not self.can_transition_to(new_status):
            raise InvalidState(
                f"Cannot transition pool from {self.status.value} to {new_status.value}",
                pool_id=self.id,
                pool_version=self.version,
            )
        self.status = new_status
