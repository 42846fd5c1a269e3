"""
Pool endpoints
==============

GET   /api/v1/pools/{pool_id}        -- pool with members; reports logical expiry
PATCH /api/v1/pools/{pool_id}/status -- lifecycle transition (trip execution)
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_lifecycle
from src.api.middleware import limiter
from src.api.schemas import ErrorResponse, PoolResponse, PoolStatusUpdate
from src.domain.entities import utcnow
from src.services.lifecycle import PoolLifecycle

router = APIRouter(prefix="/pools", tags=["pools"])


@router.get(
    "/{pool_id}",
    response_model=PoolResponse,
    summary="Get a pool and its riders",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def get_pool(
    request: Request,
    pool_id: int,
    lifecycle: PoolLifecycle = Depends(get_lifecycle),
):
    pool, members = await lifecycle.get_pool(pool_id)
    return PoolResponse.from_entity(pool, members, utcnow())


@router.patch(
    "/{pool_id}/status",
    response_model=PoolResponse,
    summary="Advance a pool through its lifecycle",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def update_pool_status(
    request: Request,
    pool_id: int,
    body: PoolStatusUpdate,
    lifecycle: PoolLifecycle = Depends(get_lifecycle),
):
    await lifecycle.advance(pool_id, body.status, body.actual_distances_km)
    pool, members = await lifecycle.get_pool(pool_id)
    return PoolResponse.from_entity(pool, members, utcnow())
