"""
Admin / observability endpoints
===============================

GET /api/v1/admin/forming-pools -- list all live forming pools with riders
GET /api/v1/admin/health        -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_lifecycle
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, PoolResponse
from src.domain.entities import utcnow
from src.services.lifecycle import PoolLifecycle

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/forming-pools",
    response_model=list[PoolResponse],
    summary="List unexpired forming pools with their rides",
)
@limiter.limit("100/minute")
async def get_forming_pools(
    request: Request,
    lifecycle: PoolLifecycle = Depends(get_lifecycle),
):
    now = utcnow()
    return [
        PoolResponse.from_entity(pool, members, now)
        for pool, members in await lifecycle.list_forming()
    ]


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
