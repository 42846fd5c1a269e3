"""
Repository Pattern -- the geospatial store behind the pooling core.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only, returning domain entities rather than ORM
rows.

Every ``try_*`` method is a *conditional write*: a single
``UPDATE ... WHERE id = :id AND version = :v AND <guards>`` that returns
``True`` when it applied and ``False`` when another writer got there first.
A mismatch never raises; deciding what a miss means is the caller's job.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Optional

from geoalchemy2 import Geography
from geoalchemy2.functions import ST_DWithin, ST_MakePoint, ST_SetSRID
from sqlalchemy import cast, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import PoolModel, RideModel
from src.domain.entities import Pool, Ride
from src.domain.enums import PoolStatus, RideStatus
from src.domain.geometry import BoundingBox, Location, haversine_km
from src.domain.matching import search_cells

_KM_PER_DEGREE_LAT = 111.32


def _ride_entity(row: RideModel) -> Ride:
    return Ride(
        id=row.id,
        passenger_id=row.passenger_id,
        pickup=Location(row.pickup_lat, row.pickup_lng, row.pickup_address),
        dropoff=Location(row.dropoff_lat, row.dropoff_lng, row.dropoff_address),
        luggage_count=row.luggage_count,
        status=RideStatus(row.status),
        pool_id=row.pool_id,
        distance_km=row.distance_km,
        estimated_price=row.estimated_price,
        actual_price=row.actual_price,
        idempotency_key=row.idempotency_key,
        version=row.version,
        requested_at=row.requested_at,
        cancelled_at=row.cancelled_at,
        completed_at=row.completed_at,
    )


def _pool_entity(row: PoolModel) -> Pool:
    centroid = bbox = None
    if row.centroid_lat is not None:
        centroid = Location(row.centroid_lat, row.centroid_lng)
        bbox = BoundingBox(
            row.bbox_min_lat, row.bbox_max_lat, row.bbox_min_lng, row.bbox_max_lng
        )
    return Pool(
        id=row.id,
        ride_ids=list(row.ride_ids or []),
        status=PoolStatus(row.status),
        seats_occupied=row.seats_occupied,
        luggage_total=row.luggage_total,
        centroid=centroid,
        pickup_centroid=Location(row.pickup_lat, row.pickup_lng),
        bounding_box=bbox,
        h3_cell=row.h3_cell,
        max_detour_km=row.max_detour_km,
        expires_at=row.expires_at,
        created_at=row.created_at,
        confirmed_at=row.confirmed_at,
        completed_at=row.completed_at,
        version=row.version,
    )


def _geography(lng, lat):
    return cast(ST_SetSRID(ST_MakePoint(lng, lat), 4326), Geography)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        passenger_id: int,
        pickup: Location,
        dropoff: Location,
        luggage_count: int,
        distance_km: float,
        idempotency_key: Optional[str] = None,
        requested_at: Optional[datetime] = None,
    ) -> Ride:
        row = RideModel(
            passenger_id=passenger_id,
            pickup_lat=pickup.latitude,
            pickup_lng=pickup.longitude,
            pickup_address=pickup.address,
            dropoff_lat=dropoff.latitude,
            dropoff_lng=dropoff.longitude,
            dropoff_address=dropoff.address,
            luggage_count=luggage_count,
            distance_km=distance_km,
            idempotency_key=idempotency_key,
            status=RideStatus.PENDING,
            version=0,
        )
        if requested_at is not None:
            row.requested_at = requested_at
        self.session.add(row)
        await self.session.flush()
        return _ride_entity(row)

    async def get(self, ride_id: int) -> Optional[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _ride_entity(row) if row else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Ride]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        row = result.scalar_one_or_none()
        return _ride_entity(row) if row else None

    async def get_many(self, ride_ids: Iterable[int]) -> dict[int, Ride]:
        ids = list(set(ride_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id.in_(ids))
            .execution_options(populate_existing=True)
        )
        return {row.id: _ride_entity(row) for row in result.scalars().all()}

    async def get_in_pool(self, pool_id: int) -> list[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.pool_id == pool_id,
                RideModel.status == RideStatus.POOLED,
            )
            .order_by(RideModel.id)
            .execution_options(populate_existing=True)
        )
        return [_ride_entity(row) for row in result.scalars().all()]

    async def get_pending_before(self, cutoff: datetime, limit: int = 100) -> list[Ride]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.status == RideStatus.PENDING,
                RideModel.requested_at <= cutoff,
            )
            .order_by(RideModel.requested_at, RideModel.id)
            .limit(limit)
        )
        return [_ride_entity(row) for row in result.scalars().all()]

    async def count_recent_nearby(
        self, location: Location, radius_km: float, since: datetime
    ) -> int:
        """Requests since *since* whose pickup lies within *radius_km*."""
        dlat = radius_km / _KM_PER_DEGREE_LAT
        dlng = radius_km / (
            _KM_PER_DEGREE_LAT * max(math.cos(math.radians(location.latitude)), 1e-6)
        )
        result = await self.session.execute(
            select(RideModel.pickup_lat, RideModel.pickup_lng).where(
                RideModel.requested_at >= since,
                RideModel.pickup_lat.between(location.latitude - dlat, location.latitude + dlat),
                RideModel.pickup_lng.between(location.longitude - dlng, location.longitude + dlng),
            )
        )
        return sum(
            1
            for lat, lng in result.all()
            if haversine_km(location, Location(lat, lng)) <= radius_km
        )

    # ── Conditional writes ────────────────────────────────────────────

    async def _try_update(self, ride: Ride, *guards, **values) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride.id, RideModel.version == ride.version, *guards)
            .values(version=RideModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def try_mark_pooled(self, ride: Ride, pool_id: int) -> bool:
        return await self._try_update(
            ride,
            RideModel.status == RideStatus.PENDING,
            RideModel.pool_id.is_(None),
            status=RideStatus.POOLED,
            pool_id=pool_id,
        )

    async def try_mark_cancelled(self, ride: Ride, now: datetime) -> bool:
        return await self._try_update(
            ride,
            RideModel.status == ride.status,
            (RideModel.pool_id == ride.pool_id)
            if ride.pool_id is not None
            else RideModel.pool_id.is_(None),
            status=RideStatus.CANCELLED,
            pool_id=None,
            cancelled_at=now,
        )

    async def try_mark_completed(
        self, ride: Ride, now: datetime, actual_price: Optional[float]
    ) -> bool:
        return await self._try_update(
            ride,
            RideModel.status == RideStatus.POOLED,
            status=RideStatus.COMPLETED,
            completed_at=now,
            actual_price=actual_price,
        )

    async def try_set_estimated_price(self, ride: Ride, price: float) -> bool:
        return await self._try_update(
            ride, RideModel.estimated_price.is_(None), estimated_price=price
        )

    async def release_pool(self, pool_id: int) -> list[int]:
        """
        Return every pooled member of *pool_id* to ``pending``.  The estimate
        priced for the discarded pool is dropped; re-pooling prices afresh.
        """
        members = await self.get_in_pool(pool_id)
        released = []
        for ride in members:
            if await self._try_update(
                ride,
                RideModel.status == RideStatus.POOLED,
                RideModel.pool_id == pool_id,
                status=RideStatus.PENDING,
                pool_id=None,
                estimated_price=None,
            ):
                released.append(ride.id)
        return released


class PoolRepository:
    def __init__(self, session: AsyncSession, postgis: bool = False):
        self.session = session
        self.postgis = postgis

    async def create(self, pool: Pool) -> Pool:
        row = PoolModel(
            ride_ids=list(pool.ride_ids),
            status=pool.status,
            seats_occupied=pool.seats_occupied,
            luggage_total=pool.luggage_total,
            pickup_lat=pool.pickup_centroid.latitude,
            pickup_lng=pool.pickup_centroid.longitude,
            h3_cell=pool.h3_cell,
            max_detour_km=pool.max_detour_km,
            expires_at=pool.expires_at,
            version=0,
        )
        if pool.centroid is not None:
            row.centroid_lat = pool.centroid.latitude
            row.centroid_lng = pool.centroid.longitude
        if pool.bounding_box is not None:
            row.bbox_min_lat = pool.bounding_box.min_lat
            row.bbox_max_lat = pool.bounding_box.max_lat
            row.bbox_min_lng = pool.bounding_box.min_lng
            row.bbox_max_lng = pool.bounding_box.max_lng
        if pool.created_at is not None:
            row.created_at = pool.created_at
        self.session.add(row)
        await self.session.flush()
        return _pool_entity(row)

    async def get(self, pool_id: int) -> Optional[Pool]:
        result = await self.session.execute(
            select(PoolModel)
            .where(PoolModel.id == pool_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _pool_entity(row) if row else None

    async def find_candidates(
        self,
        location: Location,
        *,
        radius_km: float,
        limit: int,
        max_seats: int,
        now: datetime,
        resolution: int = 7,
    ) -> list[Pool]:
        """
        Forming, unexpired pools with a free seat whose pickup centroid lies
        within *radius_km* of *location*; fuller and older pools first.
        """
        query = (
            select(PoolModel)
            .where(
                PoolModel.status == PoolStatus.FORMING,
                PoolModel.seats_occupied < max_seats,
                PoolModel.expires_at > now,
                PoolModel.h3_cell.in_(search_cells(location, radius_km, resolution)),
            )
            .order_by(
                PoolModel.seats_occupied.desc(),
                PoolModel.created_at.asc(),
                PoolModel.id.asc(),
            )
        )
        if self.postgis:
            query = query.where(
                ST_DWithin(
                    _geography(PoolModel.pickup_lng, PoolModel.pickup_lat),
                    _geography(location.longitude, location.latitude),
                    radius_km * 1000,
                )
            ).limit(limit)

        result = await self.session.execute(query)
        candidates = []
        for row in result.scalars():
            pool = _pool_entity(row)
            if haversine_km(pool.pickup_centroid, location) > radius_km:
                continue
            candidates.append(pool)
            if len(candidates) >= limit:
                break
        return candidates

    async def list_forming(self, now: datetime) -> list[Pool]:
        result = await self.session.execute(
            select(PoolModel)
            .where(PoolModel.status == PoolStatus.FORMING, PoolModel.expires_at > now)
            .order_by(PoolModel.created_at, PoolModel.id)
        )
        return [_pool_entity(row) for row in result.scalars().all()]

    async def list_expired_forming(self, now: datetime, limit: int = 100) -> list[Pool]:
        result = await self.session.execute(
            select(PoolModel)
            .where(PoolModel.status == PoolStatus.FORMING, PoolModel.expires_at <= now)
            .order_by(PoolModel.expires_at, PoolModel.id)
            .limit(limit)
        )
        return [_pool_entity(row) for row in result.scalars().all()]

    # ── Conditional writes ────────────────────────────────────────────

    async def _try_update(self, pool: Pool, *guards, bump: bool = True, **values) -> bool:
        if bump:
            values["version"] = PoolModel.version + 1
        result = await self.session.execute(
            update(PoolModel)
            .where(PoolModel.id == pool.id, PoolModel.version == pool.version, *guards)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def try_join(
        self,
        pool: Pool,
        ride: Ride,
        *,
        max_seats: int,
        max_luggage: int,
        now: datetime,
    ) -> bool:
        """Append *ride* and bump seats / luggage / version in one step."""
        return await self._try_update(
            pool,
            PoolModel.status == PoolStatus.FORMING,
            PoolModel.expires_at > now,
            PoolModel.seats_occupied + 1 <= max_seats,
            PoolModel.luggage_total + ride.luggage_count <= max_luggage,
            ride_ids=[*pool.ride_ids, ride.id],
            seats_occupied=PoolModel.seats_occupied + 1,
            luggage_total=PoolModel.luggage_total + ride.luggage_count,
        )

    async def try_leave(self, pool: Pool, ride: Ride) -> bool:
        """Remove *ride*; a pool left with no members is cancelled."""
        remaining = [rid for rid in pool.ride_ids if rid != ride.id]
        values = dict(
            ride_ids=remaining,
            seats_occupied=PoolModel.seats_occupied - 1,
            luggage_total=PoolModel.luggage_total - ride.luggage_count,
        )
        if not remaining:
            values["status"] = PoolStatus.CANCELLED
        return await self._try_update(pool, PoolModel.status == pool.status, **values)

    async def try_transition(
        self, pool: Pool, new_status: PoolStatus, **stamps
    ) -> bool:
        return await self._try_update(
            pool, PoolModel.status == pool.status, status=new_status, **stamps
        )

    async def try_expire(self, pool: Pool, now: datetime) -> bool:
        return await self._try_update(
            pool,
            PoolModel.status == PoolStatus.FORMING,
            PoolModel.expires_at <= now,
            status=PoolStatus.CANCELLED,
            ride_ids=[],
            seats_occupied=0,
            luggage_total=0,
        )

    async def try_update_geometry(
        self,
        pool: Pool,
        *,
        centroid: Location,
        pickup_centroid: Location,
        bbox: BoundingBox,
        h3_cell: str,
    ) -> bool:
        """Derived fields only: skipped (not bumped) if membership moved on."""
        return await self._try_update(
            pool,
            bump=False,
            centroid_lat=centroid.latitude,
            centroid_lng=centroid.longitude,
            bbox_min_lat=bbox.min_lat,
            bbox_max_lat=bbox.max_lat,
            bbox_min_lng=bbox.min_lng,
            bbox_max_lng=bbox.max_lng,
            pickup_lat=pickup_centroid.latitude,
            pickup_lng=pickup_centroid.longitude,
            h3_cell=h3_cell,
        )
