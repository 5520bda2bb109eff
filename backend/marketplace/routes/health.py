"""
Specialist Marketplace Backend — Health Check Route
====================================================

What:  Liveness endpoint plus the root banner.
Who:   Load balancers, uptime monitors, and humans poking at the API.

The response is 200 with status "success" whenever the process can serve
requests. Dependency state is reported alongside for monitoring:
    database: connected | disconnected   (SELECT 1)
    storage:  <backend>:available | <backend>:unavailable | <backend>:circuit_open
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text

from marketplace import __version__
from marketplace.database import Database
from marketplace.deps import get_database, get_media_storage
from marketplace.schemas.specialist import HealthResponse
from marketplace.services.cloudinary_service import CircuitBreaker, CloudinaryStorage
from marketplace.services.storage_base import MediaStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Module-level: set once when the app is first imported
_start_time = time.time()


@router.get("/", summary="API banner")
async def root() -> dict:
    return {
        "status": "success",
        "message": "Specialist Marketplace API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "specialists": "/api/specialists",
            "publish": "/api/specialists/{id}/publish",
            "upload_signature": "/api/upload/cloudinary-signature",
            "uploads": "/uploads/{filename}",
            "health": "/api/health",
        },
    }


@router.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    database: Database = Depends(get_database),
    storage: MediaStorage = Depends(get_media_storage),
) -> HealthResponse:
    db_status = "connected"
    try:
        await database.connect()
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        logger.warning("Health check: database unreachable: %s", str(e))

    if isinstance(storage, CloudinaryStorage) and storage.circuit_breaker.state == CircuitBreaker.OPEN:
        storage_status = "circuit_open"
    elif await storage.health_check():
        storage_status = "available"
    else:
        storage_status = "unavailable"

    return HealthResponse(
        status="success",
        message="API is running",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        database=db_status,
        storage=f"{storage.name}:{storage_status}",
        uptime_seconds=round(time.time() - _start_time, 2),
    )
