"""
FastAPI application entry point.
Version: 1.0.0
"""
from contextlib import asynccontextmanager
import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import health, sessions, support
from .api.websocket import websocket_endpoint
from .config import BotSettings, Settings, bot_settings as default_bot_settings, settings as default_settings
from .coordinator import SupportCoordinator, SupportState
from .database import Database
from .exceptions import SupportError
from .realtime.hub import ConnectionHub
from .realtime.router import EventRouter
from .services.bot_responder import KnowledgeBaseBotResponder
from .services.escalation import EscalationDetector
from .services.knowledge_base import KnowledgeBaseClient
from .services.transcript_service import TranscriptArchive
from .session import create_lock_manager
from .utils.middleware import (
    PROCESS_TIME_HEADER,
    REQUEST_ID_HEADER,
    RequestIDMiddleware,
    TimingMiddleware,
)
from .utils.telemetry import metrics_collector, setup_telemetry

# Configure structured logging
logging.basicConfig(
    level=default_settings.log_level if not default_settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


async def periodic_maintenance_task(app: FastAPI) -> None:
    """
    Background task purging closed sessions past retention into the archive
    and refreshing coordinator gauges.
    """
    shutdown_event: asyncio.Event = app.state.shutdown_event
    interval = app.state.settings.maintenance_interval_seconds
    logger.info(f"Starting periodic maintenance task (every {interval}s)")

    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass

        try:
            report = await app.state.coordinator.run_maintenance()
            if report.purged:
                logger.info(
                    f"Periodic maintenance: purged {report.purged} closed sessions, "
                    f"archived {report.archived}"
                )
        except Exception as e:
            logger.error(f"Error in periodic maintenance task: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the coordinator and its collaborators on startup; drain, archive
    and release them on shutdown.
    """
    settings: Settings = app.state.settings
    bot_settings: BotSettings = app.state.bot_settings
    maintenance_task = None

    # === STARTUP ===
    try:
        logger.info("=" * 60)
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Environment: {settings.environment}")
        logger.info("=" * 60)

        database = None
        archive = None
        if settings.transcript_archive_enabled:
            database = Database(settings.database_url, echo=settings.database_echo)
            database.init_db()
            if not database.check_tables_exist():
                raise RuntimeError("Failed to create transcript archive tables")
            archive = TranscriptArchive(database)
            logger.info("✓ Transcript archive ready")
        app.state.database = database

        locks = create_lock_manager(
            settings.lock_backend,
            settings.redis_url,
            timeout=settings.lock_timeout_seconds,
            retry_attempts=settings.lock_retry_attempts,
            retry_delay=settings.lock_retry_delay
        )
        logger.info(f"✓ Session locks: {type(locks).__name__}")

        knowledge_base = None
        if bot_settings.kb_enabled:
            knowledge_base = KnowledgeBaseClient.from_settings(bot_settings)
            await knowledge_base.initialize()
        app.state.knowledge_base = knowledge_base

        hub = ConnectionHub(outbox_size=settings.outbox_max_size)
        coordinator = SupportCoordinator(
            state=SupportState.in_memory(),
            hub=hub,
            settings=settings,
            locks=locks,
            bot=KnowledgeBaseBotResponder(knowledge_base, bot_settings),
            escalation=EscalationDetector.from_settings(bot_settings),
            archive=archive,
            knowledge_base=knowledge_base
        )
        router = EventRouter(
            coordinator,
            hub,
            workers=settings.router_workers,
            queue_size=settings.router_queue_size
        )
        await router.start()

        app.state.hub = hub
        app.state.coordinator = coordinator
        app.state.router = router

        app.state.shutdown_event = asyncio.Event()
        maintenance_task = asyncio.create_task(periodic_maintenance_task(app))

        logger.info("=" * 60)
        logger.info("✓ Application started successfully")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        raise

    yield  # === APPLICATION RUNS HERE ===

    # === SHUTDOWN ===
    logger.info("Shutting down application...")
    app.state.shutdown_event.set()

    if maintenance_task and not maintenance_task.done():
        try:
            await asyncio.wait_for(maintenance_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Maintenance task did not complete in time, cancelling...")
            maintenance_task.cancel()

    await app.state.router.stop()
    await app.state.coordinator.drain_bot_replies(timeout=5.0)

    if app.state.coordinator.archive is not None:
        try:
            report = await app.state.coordinator.run_maintenance(retention_seconds=0)
            logger.info(f"✓ Archived {report.archived} closed sessions on shutdown")
        except Exception as e:
            logger.error(f"Error archiving sessions on shutdown: {e}")

    if app.state.knowledge_base is not None:
        await app.state.knowledge_base.close()

    try:
        await app.state.coordinator.locks.cleanup()
    except Exception as e:
        logger.error(f"Error closing lock manager: {e}")

    if app.state.database is not None:
        app.state.database.dispose()

    logger.info("✓ Application shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    bot_settings: Optional[BotSettings] = None
) -> FastAPI:
    """Build the FastAPI application; settings default to the environment."""
    settings = settings or default_settings
    bot_settings = bot_settings or default_bot_settings

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Live customer-support session coordinator: bot, queue and human handoff",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None
    )
    app.state.settings = settings
    app.state.bot_settings = bot_settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, PROCESS_TIME_HEADER]
    )
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(TimingMiddleware, slow_threshold=settings.slow_request_seconds)

    if settings.enable_telemetry:
        setup_telemetry(app)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(
        sessions.router,
        prefix=f"{settings.api_prefix}/sessions",
        tags=["Sessions"]
    )
    app.include_router(support.router, prefix=settings.api_prefix, tags=["Support"])

    app.add_api_websocket_route("/ws", websocket_endpoint, name="websocket")

    @app.get("/", tags=["Root"])
    async def root(request: Request) -> Dict[str, Any]:
        """API information and coordinator status."""
        coordinator = getattr(request.app.state, "coordinator", None)
        database = getattr(request.app.state, "database", None)
        store_stats = await coordinator.sessions.get_stats() if coordinator else {}

        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "status": "operational",
            "endpoints": {
                "docs": "/docs" if settings.debug else "disabled",
                "health": "/health",
                "metrics": "/metrics" if settings.enable_telemetry else "disabled",
                "websocket": "/ws",
                "api": settings.api_prefix
            },
            "session_store": store_stats,
            "database": database.get_info() if database is not None else None,
            "features": {
                "lock_backend": settings.lock_backend,
                "knowledge_base": bot_settings.kb_enabled,
                "transcript_archive": settings.transcript_archive_enabled,
                "telemetry": settings.enable_telemetry
            },
            "metrics": metrics_collector.get_stats()
        }

    @app.exception_handler(SupportError)
    async def support_error_handler(request: Request, exc: SupportError) -> JSONResponse:
        """Map coordinator errors to their HTTP status."""
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions gracefully."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"Unhandled exception in request {request_id}: {exc}",
            exc_info=True,
            extra={
                "path": request.url.path,
                "method": request.method,
            }
        )
        metrics_collector.record_error()

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc) if settings.debug else "An unexpected error occurred",
                "request_id": request_id
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "livesupport.main:app",
        host=default_settings.api_host,
        port=default_settings.api_port,
        reload=default_settings.debug,
        log_level="debug" if default_settings.debug else "info",
        access_log=True
    )
