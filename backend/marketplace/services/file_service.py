"""
Specialist Marketplace Backend — Local Disk Media Storage
==========================================================

What:  Stores listing images in a local directory and serves them back.
Why:   Development and test deployments run without Cloudinary credentials;
       images still need a stable URL (/uploads/<filename>).
How:   Each image is written with aiofiles under a UUID filename, keeping
       only the (validated) extension from the client.
Who:   Selected by deps.build_media_storage() when Cloudinary is not
       configured; read back by the GET /uploads/{filename} route.

Security Model:
    1. UUID filename: no user input reaches the file system path
    2. Served files are resolved and must stay inside upload_dir, so
       "../" segments in the request path cannot escape it
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Union

import aiofiles

from marketplace.exceptions import StorageServiceError
from marketplace.services.storage_base import (
    ALLOWED_MIME_TYPES,
    IncomingFile,
    MediaStorage,
    UploadedAsset,
)

logger = logging.getLogger(__name__)

# Extensions kept from the client filename; anything else is derived from MIME type
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


class LocalDiskStorage(MediaStorage):
    """
    Writes images to a flat directory.

    Directory Structure:
        uploads/
        ├── 0b7c1e9a-....jpg
        └── 5f2d8c41-....webp
    """

    name = "local"

    def __init__(self, upload_dir: Union[str, Path]):
        self.upload_dir = Path(upload_dir).resolve()
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        logger.info("LocalDiskStorage initialized with upload_dir=%s", self.upload_dir)

    def _extension_for(self, upload: IncomingFile) -> str:
        ext = Path(upload.filename or "").suffix.lower()
        if ext in ALLOWED_EXTENSIONS:
            return ext
        return ALLOWED_MIME_TYPES.get((upload.content_type or "").lower(), "")

    async def store(self, upload: IncomingFile) -> UploadedAsset:
        stored_name = f"{uuid.uuid4()}{self._extension_for(upload)}"
        absolute_path = self.upload_dir / stored_name

        try:
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(upload.content)
        except OSError as e:
            # Disk full, permission denied, ...
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise StorageServiceError(
                message="Failed to save uploaded image. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

        logger.info("File stored: %s (%d bytes)", stored_name, upload.size)
        return UploadedAsset(
            original_name=upload.filename,
            size=upload.size,
            mime_type=upload.content_type,
            path=str(absolute_path),
            filename=stored_name,
        )

    async def delete(self, asset: UploadedAsset) -> None:
        if not asset.filename:
            return
        path = self.resolve(asset.filename)
        if path is None or not path.exists():
            logger.debug("Cleanup: file already gone: %s", asset.filename)
            return
        os.remove(path)
        logger.info("Cleaned up file: %s", asset.filename)

    def resolve(self, filename: str) -> Optional[Path]:
        """
        Map a requested filename to a path inside upload_dir.

        Returns:
            The resolved path, or None if it would escape upload_dir.
        """
        candidate = (self.upload_dir / filename).resolve()
        if candidate == self.upload_dir or self.upload_dir not in candidate.parents:
            return None
        return candidate

    async def health_check(self) -> bool:
        return self.upload_dir.is_dir() and os.access(self.upload_dir, os.W_OK)
