"""FastAPI dependency injection helpers.

Components are built once in ``create_app`` and hung off ``app.state``;
routes reach them through these getters instead of module globals.
"""

from fastapi import Request

from src.services.lifecycle import PoolLifecycle
from src.services.rides import RideService


def get_ride_service(request: Request) -> RideService:
    return request.app.state.ride_service


def get_lifecycle(request: Request) -> PoolLifecycle:
    return request.app.state.lifecycle
