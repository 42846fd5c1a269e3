"""
FastAPI application factory.

* Builds every component once (engine, services, reaper) from ``Settings``
  and stores them on ``app.state`` -- no process-wide singletons.
* Registers routes for rides, pools and admin.
* Starts / stops the background expiry reaper via lifespan events.
* Maps the pooling error taxonomy to HTTP responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, pools, rides
from src.config import Settings
from src.domain.errors import (
    Conflict,
    ConstraintViolation,
    InvalidState,
    NotFound,
    PoolingError,
    UpstreamUnavailable,
)
from src.domain.pricing import PricingEngine
from src.infrastructure.database import build_engine, build_session_factory
from src.infrastructure.redis_client import build_redis
from src.services.lifecycle import PoolLifecycle
from src.services.matcher import PoolMatcher
from src.services.mutator import PoolMutator
from src.services.rides import RideService
from src.workers.reaper import ExpiryReaper

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    NotFound: 404,
    InvalidState: 409,
    Conflict: 409,
    ConstraintViolation: 422,
    UpstreamUnavailable: 503,
}


async def _pooling_error_handler(request: Request, exc: PoolingError) -> JSONResponse:
    status_code = next(
        (code for kind, code in _STATUS_CODES.items() if isinstance(exc, kind)), 500
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    logger.info("%s %s -> %d %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, **exc.context()},
        headers=headers,
    )


def wire_components(app: FastAPI, settings: Settings) -> None:
    """Construct one instance of each component and attach it to *app*."""
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    pricing = PricingEngine(
        base_fare=settings.base_fare,
        rate_per_km=settings.rate_per_km,
        luggage_fee=settings.luggage_fee,
        max_demand_multiplier=settings.max_demand_multiplier,
        shared_discount=settings.shared_discount,
    )
    mutator = PoolMutator(session_factory, settings)
    matcher = PoolMatcher(session_factory, mutator, settings)
    lifecycle = PoolLifecycle(session_factory, mutator, pricing, settings)
    ride_service = RideService(session_factory, matcher, mutator, pricing, settings)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.mutator = mutator
    app.state.matcher = matcher
    app.state.lifecycle = lifecycle
    app.state.ride_service = ride_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry reaper on startup; stop it and the engine on shutdown."""
    reaper: Optional[ExpiryReaper] = None
    if app.state.run_reaper:
        settings = app.state.settings
        redis = build_redis(settings.redis_url)
        reaper = ExpiryReaper(
            app.state.session_factory,
            app.state.lifecycle,
            app.state.ride_service,
            redis,
            settings,
        )
        await reaper.start()
    yield
    if reaper is not None:
        await reaper.stop()
        await reaper.redis.aclose()
    await app.state.engine.dispose()


def create_app(settings: Optional[Settings] = None, run_reaper: bool = True) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(
        title="Airport Ride Pool Matching API",
        description=(
            "Groups pickup requests at one location into shared-vehicle pools "
            "in real time, under seat, luggage, detour and expiry constraints, "
            "without double-booking under concurrent requests."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    wire_components(app, settings)
    app.state.run_reaper = run_reaper

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(PoolingError, _pooling_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(pools.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
