"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.entities import Pool, Ride
from src.domain.enums import PoolStatus
from src.domain.geometry import Location
from src.domain.matching import footprint_km


# ── Shared ────────────────────────────────────────────────────────────


class Point(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=255)

    def to_location(self) -> Location:
        return Location(self.lat, self.lng, self.address)

    @classmethod
    def from_location(cls, location: Location) -> "Point":
        return cls(lat=location.latitude, lng=location.longitude, address=location.address)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    passenger_id: int
    pickup: Point
    dropoff: Point
    luggage_count: int = Field(1, ge=0, le=3)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class PriceEstimateRequest(BaseModel):
    pickup: Point
    dropoff: Point
    luggage_count: int = Field(1, ge=0, le=3)


class PoolStatusUpdate(BaseModel):
    status: PoolStatus
    actual_distances_km: dict[int, float] = Field(
        default_factory=dict,
        description="Per-ride travelled distance, used to settle prices on completion.",
    )


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    passenger_id: int
    pickup: Point
    dropoff: Point
    luggage_count: int
    status: str
    pool_id: Optional[int] = None
    distance_km: float
    estimated_price: Optional[float] = None
    actual_price: Optional[float] = None
    version: int
    requested_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, ride: Ride) -> "RideResponse":
        return cls(
            id=ride.id,
            passenger_id=ride.passenger_id,
            pickup=Point.from_location(ride.pickup),
            dropoff=Point.from_location(ride.dropoff),
            luggage_count=ride.luggage_count,
            status=ride.status.value,
            pool_id=ride.pool_id,
            distance_km=round(ride.distance_km, 3),
            estimated_price=ride.estimated_price,
            actual_price=ride.actual_price,
            version=ride.version,
            requested_at=ride.requested_at,
            cancelled_at=ride.cancelled_at,
            completed_at=ride.completed_at,
        )


class BoundingBoxResponse(BaseModel):
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


class PoolResponse(BaseModel):
    id: int
    status: str
    ride_ids: list[int]
    seats_occupied: int
    luggage_total: int
    centroid: Optional[Point] = None
    bounding_box: Optional[BoundingBoxResponse] = None
    detour_km: float = Field(
        ...,
        description=(
            "Straight-line approximation: mean of the pickup and drop-off "
            "spread around their centroids. Not a road-route detour."
        ),
    )
    max_detour_km: float
    expires_at: datetime
    is_expired: bool
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int
    rides: list[RideResponse] = []

    @classmethod
    def from_entity(cls, pool: Pool, members: list[Ride], now: datetime) -> "PoolResponse":
        bbox = None
        if pool.bounding_box is not None:
            bbox = BoundingBoxResponse(**vars(pool.bounding_box))
        return cls(
            id=pool.id,
            status=pool.status.value,
            ride_ids=pool.ride_ids,
            seats_occupied=pool.seats_occupied,
            luggage_total=pool.luggage_total,
            centroid=Point.from_location(pool.centroid) if pool.centroid else None,
            bounding_box=bbox,
            detour_km=round(
                footprint_km([r.pickup for r in members], [r.dropoff for r in members]), 3
            ),
            max_detour_km=pool.max_detour_km,
            expires_at=pool.expires_at,
            is_expired=pool.is_expired(now),
            created_at=pool.created_at,
            confirmed_at=pool.confirmed_at,
            completed_at=pool.completed_at,
            version=pool.version,
            rides=[RideResponse.from_entity(r) for r in members],
        )


class PriceEstimateResponse(BaseModel):
    distance_km: float
    base_price: float
    demand_multiplier: float
    luggage_fee: float
    estimated_price: float
    currency: str


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    ride_id: Optional[int] = None
    pool_id: Optional[int] = None
    ride_version: Optional[int] = None
    pool_version: Optional[int] = None
    retryable: bool = False
