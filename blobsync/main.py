"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from blobsync.api.admin import router as admin_router
from blobsync.api.health import router as health_router
from blobsync.api.settings import router as settings_router
from blobsync.config import Settings
from blobsync.database import DatabaseProvider
from blobsync.exceptions import InternalServerError, SyncUnavailableError
from blobsync.services.sync_status import SyncStatusTracker
from blobsync.services.write_sync_service import WriteSyncService
from blobsync.storage.object_store import ObjectStoreGateway

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    for name in ("botocore", "boto3", "urllib3", "s3transfer"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: reconcile with object storage, then serve."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info(
        "Starting blobsync (debug=%s, remote=%s)",
        settings.debug,
        settings.storage_bucket or "not configured",
    )

    provider: DatabaseProvider = app.state.provider
    try:
        await provider.get_handle()
    except Exception as exc:
        logger.critical(
            "Failed to initialize database at %s: %s. Check database path and permissions.",
            settings.database_path,
            exc,
        )
        raise

    yield

    try:
        await provider.close()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    app.state.gateway.close()
    logger.info("blobsync stopped")


def create_app(
    settings: Settings | None = None,
    *,
    gateway: ObjectStoreGateway | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()
    if gateway is None:
        gateway = ObjectStoreGateway.from_settings(settings)

    app = FastAPI(
        title="blobsync",
        description="Local SQLite database kept durable in object storage",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    tracker = SyncStatusTracker()
    provider = DatabaseProvider(settings, gateway, tracker)
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.sync_tracker = tracker
    app.state.provider = provider
    app.state.sync_service = WriteSyncService(provider, gateway, tracker, settings)

    app.include_router(health_router)
    app.include_router(admin_router)
    app.include_router(settings_router)

    # Global exception handlers: safety net for unhandled exceptions

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(SyncUnavailableError)
    async def sync_unavailable_handler(
        request: Request, exc: SyncUnavailableError
    ) -> JSONResponse:
        logger.warning("SyncUnavailableError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc) or "Remote sync is not configured"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "blobsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
