"""
Ride endpoints
==============

POST  /api/v1/rides                 -- request a ride; pooled synchronously (201)
POST  /api/v1/rides/estimate        -- solo price quote before requesting
GET   /api/v1/rides/{ride_id}       -- ride status, pool and price
PATCH /api/v1/rides/{ride_id}/cancel -- cancel a ride, freeing its seat
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_ride_service
from src.api.middleware import limiter
from src.api.schemas import (
    ErrorResponse,
    PriceEstimateRequest,
    PriceEstimateResponse,
    RideCreateRequest,
    RideResponse,
)
from src.services.rides import RideService

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Request a ride",
    description=(
        "Records the request and pools it in the same call. If pooling cannot "
        "complete (store unavailable, contention budget spent) the ride is "
        "returned as `pending` and re-matched in the background."
    ),
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    service: RideService = Depends(get_ride_service),
):
    ride = await service.request_ride(
        passenger_id=body.passenger_id,
        pickup=body.pickup.to_location(),
        dropoff=body.dropoff.to_location(),
        luggage_count=body.luggage_count,
        idempotency_key=body.idempotency_key,
    )
    return RideResponse.from_entity(ride)


@router.post(
    "/estimate",
    response_model=PriceEstimateResponse,
    summary="Estimate a solo price",
)
@limiter.limit("100/minute")
async def estimate_price(
    request: Request,
    body: PriceEstimateRequest,
    service: RideService = Depends(get_ride_service),
):
    quote = await service.estimate(
        body.pickup.to_location(), body.dropoff.to_location(), body.luggage_count
    )
    return PriceEstimateResponse(
        distance_km=quote.distance_km,
        base_price=quote.base_price,
        demand_multiplier=quote.demand_multiplier,
        luggage_fee=quote.luggage_fee,
        estimated_price=quote.estimated_price,
        currency=quote.currency,
    )


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride status and price",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: int,
    service: RideService = Depends(get_ride_service),
):
    return RideResponse.from_entity(await service.get_ride(ride_id))


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description=(
        "Transitions a `pending` or `pooled` ride to `cancelled`. "
        "If the ride was in a pool, its seat and luggage are freed."
    ),
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: int,
    service: RideService = Depends(get_ride_service),
):
    return RideResponse.from_entity(await service.cancel_ride(ride_id))
