"""FastAPI application entry point."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from spacc.api.audit import router as audit_router
from spacc.api.health import router as health_router
from spacc.api.progress import router as progress_router
from spacc.api.sync import router as sync_router
from spacc.config import Settings
from spacc.exceptions import BackendError, InternalServerError, ReportNotFoundError

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
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting SPACC audit service (debug=%s)", settings.debug)

    from spacc.backends.factory import HttpBackendFactory
    from spacc.services.progress_service import ProgressSessionManager
    from spacc.services.report_service import FileReportStore

    try:
        settings.tmp_dir.mkdir(parents=True, exist_ok=True)
        app.state.report_store = FileReportStore(settings.reports_dir)
    except Exception as exc:
        logger.critical(
            "Failed to initialize data directories %s and %s: %s.",
            settings.reports_dir,
            settings.tmp_dir,
            exc,
        )
        raise

    backends = HttpBackendFactory.from_settings(settings)
    app.state.backends = backends
    progress = ProgressSessionManager.from_settings(settings)
    app.state.progress = progress

    yield

    try:
        await progress.close()
    except Exception as exc:
        logger.error("Error during progress session shutdown: %s", exc, exc_info=True)

    try:
        await backends.aclose()
    except Exception as exc:
        logger.error("Error closing back-end clients: %s", exc, exc_info=True)

    logger.info("SPACC audit service stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="SPACC",
        description="Document library to ACC inventory audit and repair",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.include_router(health_router)
    app.include_router(audit_router)
    app.include_router(sync_router)
    app.include_router(progress_router)

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

    @app.exception_handler(ReportNotFoundError)
    async def report_not_found_handler(
        request: Request, exc: ReportNotFoundError
    ) -> JSONResponse:
        logger.info(
            "Report %s not found for %s %s", exc.report_id, request.method, request.url.path
        )
        return JSONResponse(status_code=404, content={"detail": "Report not found"})

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
        logger.error(
            "BackendError in %s %s (upstream status %s): %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Upstream service error"},
        )

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(json.JSONDecodeError)
    async def json_error_handler(request: Request, exc: json.JSONDecodeError) -> JSONResponse:
        logger.error(
            "JSONDecodeError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Data integrity error"},
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

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "spacc.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
