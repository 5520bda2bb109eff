"""
Specialist Marketplace Backend — Request Dependencies
======================================================

What:  FastAPI dependencies that hand route handlers their collaborators,
       and the factory that picks the media storage backend.
Why:   Routes never import a global engine or storage; they receive what
       create_app() put on app.state, so tests can swap either one.
"""

import logging
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import Settings
from marketplace.database import Database
from marketplace.services.cloudinary_service import CloudinaryStorage
from marketplace.services.file_service import LocalDiskStorage
from marketplace.services.storage_base import MediaStorage

logger = logging.getLogger(__name__)


def build_media_storage(app_settings: Settings) -> MediaStorage:
    """Cloudinary when all three credentials are set, local disk otherwise."""
    if app_settings.cloudinary_configured:
        return CloudinaryStorage.from_settings(app_settings)
    logger.warning(
        "Cloudinary is not configured; storing uploads on local disk in %s",
        app_settings.upload_dir,
    )
    return LocalDiskStorage(app_settings.upload_dir)


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield one session per request.

    Commits when the handler returns, rolls back (and re-raises) when it
    raises, so every request is all-or-nothing.
    """
    database: Database = request.app.state.database
    # Lazily connect for apps driven without a lifespan (e.g. ASGI test transports)
    await database.connect()
    async with database.session() as session:
        yield session


def get_media_storage(request: Request) -> MediaStorage:
    return request.app.state.media_storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
