"""
Health check API routes.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, Request

from ...coordinator.coordinator import SupportCoordinator
from ...models.base import utcnow
from ...models.schemas import HealthResponse
from ...session.locking import RedisLockManager
from ..dependencies import get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=HealthResponse, response_model_by_alias=True)
async def health_check(request: Request):
    """
    Basic health check endpoint.

    Returns:
        System health status
    """
    return HealthResponse(
        status="healthy",
        timestamp=utcnow(),
        version=request.app.version,
        services={}
    )


@router.get("/ready", response_model=HealthResponse, response_model_by_alias=True)
async def readiness_check(
    request: Request,
    coordinator: SupportCoordinator = Depends(get_coordinator)
):
    """
    Readiness check for all services.

    Returns:
        Detailed service health status
    """
    services = {}
    overall_status = "healthy"

    store_health = await coordinator.sessions.health_check()
    if store_health.get("healthy"):
        services["session_store"] = "healthy"
    else:
        services["session_store"] = "unhealthy"
        overall_status = "unhealthy"

    if isinstance(coordinator.locks, RedisLockManager):
        if await coordinator.locks.ping():
            services["redis_locks"] = "healthy"
        else:
            services["redis_locks"] = "unhealthy"
            overall_status = "unhealthy"
    else:
        services["locks"] = "local"

    database = getattr(request.app.state, "database", None)
    if database is not None:
        if await asyncio.to_thread(database.check_connection, 1):
            services["database"] = "healthy"
        else:
            services["database"] = "unhealthy"
            overall_status = "degraded" if overall_status == "healthy" else overall_status

    if coordinator.knowledge_base is not None:
        services["knowledge_base"] = f"circuit_{coordinator.knowledge_base.breaker_state}"
        if coordinator.knowledge_base.breaker_state != "closed" and overall_status == "healthy":
            overall_status = "degraded"

    router_ = getattr(request.app.state, "router", None)
    services["event_router"] = "running" if router_ is not None and router_.running else "stopped"

    return HealthResponse(
        status=overall_status,
        timestamp=utcnow(),
        version=request.app.version,
        services=services
    )


@router.get("/live")
async def liveness_check():
    """
    Simple liveness check.

    Returns:
        Basic alive status
    """
    return {"status": "alive", "timestamp": utcnow().isoformat()}
