"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS, or SQLite locally).

Tables
------
* ``rides``  -- individual pooling requests
* ``pools``  -- forming / active shared-ride groups

Coordinates are plain float columns so the same schema runs on SQLite.
On PostgreSQL the migration adds a **GIST** index on the geography
expression of the pool pickup centroid, which backs ``ST_DWithin``.

Indexes
-------
* **B-Tree** on ``pools.h3_cell`` and ``(status, expires_at)`` for the
  candidate query, and on ``rides.status`` / ``rides.pool_id`` /
  ``rides.idempotency_key`` for look-ups used by the matcher and the API.
"""

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
)

from .database import Base
from src.domain.entities import utcnow
from src.domain.enums import PoolStatus, RideStatus


def _values(enum_cls):
    return [member.value for member in enum_cls]


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    passenger_id = Column(Integer, nullable=False)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_address = Column(String(255), nullable=True)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    dropoff_address = Column(String(255), nullable=True)

    status = Column(
        Enum(RideStatus, values_callable=_values),
        default=RideStatus.PENDING,
        nullable=False,
    )
    luggage_count = Column(Integer, default=0, nullable=False)
    # Back-reference only; pools.ride_ids is the membership authority.
    pool_id = Column(Integer, nullable=True)

    distance_km = Column(Float, nullable=False)
    estimated_price = Column(Float, nullable=True)
    actual_price = Column(Float, nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)
    version = Column(Integer, default=0, nullable=False)

    requested_at = Column(DateTime, default=utcnow, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_rides_status_requested", "status", "requested_at"),
        Index("idx_rides_pool", "pool_id"),
        Index("idx_rides_passenger", "passenger_id"),
        Index("idx_rides_idempotency", "idempotency_key"),
        CheckConstraint("luggage_count BETWEEN 0 AND 3", name="ck_rides_luggage_range"),
    )


class PoolModel(Base):
    __tablename__ = "pools"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_ids = Column(JSON, default=list, nullable=False)  # join order
    status = Column(
        Enum(PoolStatus, values_callable=_values),
        default=PoolStatus.FORMING,
        nullable=False,
    )
    seats_occupied = Column(Integer, default=0, nullable=False)
    luggage_total = Column(Integer, default=0, nullable=False)

    # Centre of all member pickups + drop-offs, and its extent
    centroid_lat = Column(Float, nullable=True)
    centroid_lng = Column(Float, nullable=True)
    bbox_min_lat = Column(Float, nullable=True)
    bbox_max_lat = Column(Float, nullable=True)
    bbox_min_lng = Column(Float, nullable=True)
    bbox_max_lng = Column(Float, nullable=True)

    # Centre of member pickups only -- what proximity search runs against
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    h3_cell = Column(String(20), nullable=False)

    max_detour_km = Column(Float, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_pools_status_expires", "status", "expires_at"),
        Index("idx_pools_cell", "h3_cell"),
        Index("idx_pools_status_seats_created", "status", "seats_occupied", "created_at"),
    )
