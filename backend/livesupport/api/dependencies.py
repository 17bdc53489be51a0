"""
FastAPI dependencies resolving the objects built in the lifespan.
"""
from fastapi import Request

from ..coordinator.coordinator import SupportCoordinator


def get_coordinator(request: Request) -> SupportCoordinator:
    return request.app.state.coordinator
