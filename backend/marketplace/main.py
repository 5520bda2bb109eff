"""
Specialist Marketplace Backend — FastAPI Application Factory
=============================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the Database handle and media storage, registers
       middleware, exception handlers and routers, and returns the app.
Who:   uvicorn (`uvicorn marketplace.main:app`) and the test-suite, which
       passes its own Database and storage.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │  Middleware:  Request ID → Access Log → GZip → CORS │
    │  Routes:      /api/specialists  /api/upload         │
    │               /api/health  /uploads  /              │
    │  Errors:      every failure → {status, message}     │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging
    2. Validate configuration (logged, does not abort)
    3. Connect the database; create missing tables if DB_AUTO_CREATE
    Shutdown:
    1. Close the storage client
    2. Dispose the database engine

Error envelope:
    {"status": "fail" (4xx) | "error" (5xx), "message": ..., "request_id": ...}
    plus "stack" on 5xx responses outside production.
"""

import logging
import sys
import traceback
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace import __version__
from marketplace.config import Settings, settings
from marketplace.database import Database
from marketplace.deps import build_media_storage
from marketplace.exceptions import (
    CircuitBreakerOpenError,
    MarketplaceError,
    StorageServiceError,
)
from marketplace.middleware.logging import RequestLoggingMiddleware
from marketplace.middleware.request_id import (
    REQUEST_ID_HEADER,
    RequestIDLogFilter,
    RequestIDMiddleware,
    current_request_id,
)
from marketplace.routes import health, specialists, upload
from marketplace.services.storage_base import MediaStorage

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once for the whole process.

    Format: 2026-01-15T12:00:00 [INFO] marketplace.services... [3f9a1c2b7d4e] message
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Third-party libraries are noisy at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("cloudinary").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    app_settings: Settings = app.state.settings
    database: Database = app.state.database
    storage: MediaStorage = app.state.media_storage

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(app_settings.log_level)
    logger.info("=" * 60)
    logger.info("Specialist Marketplace API %s starting (%s)", __version__, app_settings.environment)

    try:
        app_settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving; /api/health reports what is broken
        logger.error("Configuration error: %s", str(e))

    await database.connect()
    if app_settings.db_auto_create:
        try:
            await database.create_schema()
        except Exception as e:
            logger.error("Could not create database schema: %s", str(e), exc_info=True)

    logger.info("Media storage: %s", storage.name)
    logger.info("Server ready at http://%s:%d", app_settings.backend_host, app_settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Specialist Marketplace API shutting down...")
    await storage.close()
    await database.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    request: Request,
    status_code: int,
    message: str,
    exc: Optional[BaseException] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    # Unhandled errors are answered outside RequestIDMiddleware, after its
    # ContextVar was reset; request.state still carries the ID
    request_id = getattr(request.state, "request_id", None) or current_request_id()
    content: Dict[str, Any] = {
        "status": "fail" if status_code < 500 else "error",
        "message": message,
        "request_id": request_id,
    }
    app_settings: Settings = request.app.state.settings
    if status_code >= 500 and exc is not None and not app_settings.is_production:
        content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    headers = dict(headers or {})
    if request_id != "-":
        headers.setdefault(REQUEST_ID_HEADER, request_id)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _request_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation failed"
    first = errors[0]
    # Drop the "query"/"path"/"body" prefix from the location
    loc = [str(part) for part in first.get("loc", ())[1:]]
    name = ".".join(loc)
    original = (first.get("ctx") or {}).get("error")
    message = str(original) if isinstance(original, Exception) else first.get("msg", "Invalid value")
    return f"{name}: {message}" if name else message


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map every failure to the error envelope.

    Handler hierarchy:
        MarketplaceError subclasses → their own status_code (400/404/500/503)
        RequestValidationError      → 400 (bad query/path/body parameter)
        HTTPException               → its status (404 "Not Found - <path>")
        Exception (fallback)        → 500
    """

    @app.exception_handler(MarketplaceError)
    async def handle_marketplace_error(request: Request, exc: MarketplaceError):
        headers = None
        if isinstance(exc, CircuitBreakerOpenError):
            headers = {"Retry-After": str(exc.recovery_time)}
        elif isinstance(exc, StorageServiceError) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}

        if exc.status_code >= 500:
            logger.error("%s: %s | Context: %s", type(exc).__name__, exc.message, exc.context)
        else:
            logger.warning("%s: %s", type(exc).__name__, exc.message)
        return _error_response(request, exc.status_code, exc.message, exc, headers)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        message = _request_validation_message(exc)
        logger.warning("Request validation error: %s", message)
        return _error_response(request, 400, message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            message = f"Not Found - {request.url.path}"
        else:
            message = str(exc.detail)
        return _error_response(request, exc.status_code, message, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error: %s", str(exc), exc_info=True)
        app_settings: Settings = request.app.state.settings
        message = "Internal Server Error" if app_settings.is_production else str(exc) or "Internal Server Error"
        return _error_response(request, 500, message, exc)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    app_settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    media_storage: Optional[MediaStorage] = None,
) -> FastAPI:
    """
    Assemble the application.

    Args:
        app_settings: Defaults to the environment-loaded `settings`
        database: Defaults to a Database built from the settings (not yet connected)
        media_storage: Defaults to Cloudinary if configured, local disk otherwise
    """
    cfg = app_settings or settings

    app = FastAPI(
        title="Specialist Marketplace API",
        description="Create, curate and publish specialist service listings.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Set here (not in lifespan) so apps driven without a lifespan still work
    app.state.settings = cfg
    app.state.database = database or Database.from_settings(cfg)
    app.state.media_storage = media_storage or build_media_storage(cfg)

    # ── Register Middleware ───────────────────────────────────────────────
    # Executes in reverse order of addition: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(specialists.router)
    app.include_router(upload.router)
    app.include_router(health.router)

    return app


# uvicorn marketplace.main:app
app = create_app()
