"""
FastAPI application entry point.

Main API server for SignalHub: signal ingestion, lifecycle updates,
queries and the real-time stream.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signalhub.core.config import Settings, settings as default_settings
from signalhub.core.database import (
    build_engine,
    build_session_factory,
    close_db,
    create_tables,
)
from signalhub.core.exceptions import SignalHubError, StorageError
from signalhub.core.logging import setup_logging
from signalhub.core.redis import create_async_redis
from signalhub.services.broadcaster import RedisSignalBroadcaster, SignalBroadcaster
from signalhub.services.signal_store import SignalStore

logger = logging.getLogger(__name__)


def _error_body(code: str, message: str, field: Optional[str] = None) -> dict:
    body = {"success": False, "error": code, "message": message}
    if field:
        body["field"] = field
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SignalHubError)
    async def signalhub_error_handler(request: Request, exc: SignalHubError):
        if isinstance(exc, StorageError):
            logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
            message = "Internal server error"
        else:
            message = exc.message
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, message, exc.field),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        field = loc[0] if loc else None
        return JSONResponse(
            status_code=400,
            content=_error_body("invalid_request", first.get("msg", "Invalid request"), field),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception at {request.url}: {exc}")
        return JSONResponse(
            status_code=500,
            content=_error_body("internal_error", "Internal server error"),
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; one store and one broadcaster per process."""
    settings = settings or default_settings

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Trading signal ingestion and real-time broadcast",
        debug=settings.DEBUG,
    )
    app.state.settings = settings

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.on_event("startup")
    async def startup() -> None:
        """Run on application startup."""
        engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
        if settings.DB_AUTO_CREATE:
            await create_tables(engine)

        store = SignalStore(
            build_session_factory(engine),
            default_source=settings.DEFAULT_SIGNAL_SOURCE,
        )
        if settings.BROADCAST_BACKEND == "redis":
            broadcaster = RedisSignalBroadcaster(
                store,
                create_async_redis(settings.REDIS_URL, settings.REDIS_MAX_CONNECTIONS),
                settings.BROADCAST_CHANNEL,
                queue_size=settings.VIEWER_QUEUE_SIZE,
            )
        else:
            broadcaster = SignalBroadcaster(store, queue_size=settings.VIEWER_QUEUE_SIZE)
        await broadcaster.start()

        app.state.engine = engine
        app.state.signal_store = store
        app.state.broadcaster = broadcaster

        if not settings.SIGNAL_API_KEY:
            logger.error("SIGNAL_API_KEY is not set; signal ingestion will refuse all requests")
        logger.info(
            "%s %s started (environment=%s, broadcast=%s)",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT, settings.BROADCAST_BACKEND,
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        """Run on application shutdown."""
        await app.state.broadcaster.close()
        await close_db(app.state.engine)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": f"Welcome to {settings.APP_NAME} API",
            "version": settings.APP_VERSION,
            "docs": "/docs",
        }

    from signalhub.api.stream import router as stream_router
    from signalhub.api.signals import router as signals_router
    from signalhub.api.admin import router as admin_router
    from signalhub.api.metrics import router as metrics_router

    # Stream goes first so /signals/stream is not taken for a signal id
    app.include_router(stream_router, prefix="/api/signals", tags=["stream"])
    app.include_router(signals_router, prefix="/api/signals", tags=["signals"])
    app.include_router(admin_router, prefix="/api/admin/signals", tags=["admin"])
    app.include_router(metrics_router, prefix="/api/metrics", tags=["metrics"])

    return app


setup_logging(default_settings.LOG_LEVEL)

app = create_app()
