"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    POOLED = "pooled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PoolStatus(str, enum.Enum):
    FORMING = "forming"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses.
# POOLED -> PENDING only happens when the ride's pool is discarded.
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.POOLED, RideStatus.CANCELLED},
    RideStatus.POOLED: {
        RideStatus.PENDING,
        RideStatus.CANCELLED,
        RideStatus.COMPLETED,
    },
    RideStatus.CANCELLED: set(),
    RideStatus.COMPLETED: set(),
}

POOL_TRANSITIONS: dict[PoolStatus, set[PoolStatus]] = {
    PoolStatus.FORMING: {PoolStatus.CONFIRMED, PoolStatus.CANCELLED},
    PoolStatus.CONFIRMED: {PoolStatus.IN_PROGRESS, PoolStatus.CANCELLED},
    PoolStatus.IN_PROGRESS: {PoolStatus.COMPLETED},
    PoolStatus.COMPLETED: set(),
    PoolStatus.CANCELLED: set(),
}

# Pools a member ride may still leave by cancelling.
DETACHABLE_POOL_STATUSES = {PoolStatus.FORMING, PoolStatus.CONFIRMED}
