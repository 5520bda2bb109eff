"""
Specialist Marketplace Backend — Abstract Media Storage Interface
==================================================================

What:  Contract for the places listing images can be stored, plus the
       upload validation and fan-out shared by every backend.
Why:   The lifecycle service only needs "a URL for this image". Whether the
       bytes went to Cloudinary or to a local directory is a deployment
       decision (Strategy pattern), selected in deps.build_media_storage().
How:   Concrete backends inherit from MediaStorage and implement store(),
       delete() and health_check().
Who:   CloudinaryStorage (production), LocalDiskStorage (development, tests).

Upload rules (applied before anything is stored):
    - Content type: image/jpeg, image/jpg, image/png, image/gif, image/webp
    - Size: 1 byte to MAX_FILE_SIZE (default 10MB) per file
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from marketplace.exceptions import ValidationError

logger = logging.getLogger(__name__)

# MIME type → extension used when the original filename has none
ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


@dataclass
class IncomingFile:
    """An uploaded image read fully into memory, not yet stored."""

    filename: str
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadedAsset:
    """
    What a storage backend reports back for one stored image.

    Backends fill in whichever locators they have; resolve_file_path()
    picks the one persisted on the Media row.
    """

    original_name: str
    size: int
    mime_type: Optional[str] = None
    secure_url: Optional[str] = None
    url: Optional[str] = None
    path: Optional[str] = None
    filename: Optional[str] = None
    public_id: Optional[str] = None


def resolve_file_path(asset: UploadedAsset) -> str:
    """
    Pick the locator stored in media.file_path.

    Preference: secure URL, plain URL, a path that is already a URL,
    /uploads/<stored filename>, and finally the original name.
    """
    if asset.secure_url:
        return asset.secure_url
    if asset.url:
        return asset.url
    if asset.path and asset.path.startswith("http"):
        return asset.path
    if asset.filename:
        return f"/uploads/{asset.filename}"
    return asset.original_name


def validate_image(upload: IncomingFile, max_size: int) -> None:
    """
    Reject anything that is not a non-empty image within the size limit.

    Raises:
        ValidationError naming the offending file
    """
    content_type = (upload.content_type or "").lower()
    if content_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            message="Invalid file type. Only JPEG, PNG, GIF, and WebP images are allowed.",
            field="images",
            context={"filename": upload.filename, "content_type": content_type},
        )

    if upload.size == 0:
        raise ValidationError(
            message=f"File '{upload.filename}' is empty.",
            field="images",
        )

    if upload.size > max_size:
        max_mb = max_size / (1024 * 1024)
        raise ValidationError(
            message=f"File '{upload.filename}' exceeds the maximum size of {max_mb:.0f}MB.",
            field="images",
            context={"size": upload.size, "max_size": max_size},
        )


class MediaStorage(ABC):
    """
    Abstract interface for storing listing images.

    Contract:
        - store() persists one validated image and returns its locators
        - delete() removes a previously stored image; it is best-effort and
          used to discard uploads when the surrounding operation fails
        - Backend-specific failures are translated to StorageServiceError
    """

    name: str = "storage"

    @abstractmethod
    async def store(self, upload: IncomingFile) -> UploadedAsset:
        """
        Persist one image.

        Raises:
            StorageServiceError: the backend failed (after retries, if any)
            CircuitBreakerOpenError: the backend is being shielded
        """
        ...

    @abstractmethod
    async def delete(self, asset: UploadedAsset) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the backend looks usable. Never raises."""
        ...

    async def close(self) -> None:
        """Release network clients etc. Called on application shutdown."""
        return None


async def store_uploads(
    storage: MediaStorage,
    uploads: Sequence[IncomingFile],
    max_size: int,
) -> List[UploadedAsset]:
    """
    Validate every file, then store them all concurrently.

    All files are validated before the first byte is stored, so a bad file
    never leaves its siblings behind. If any store fails, the ones that
    succeeded are discarded and the first failure is raised.

    Returns:
        Assets in the same order as `uploads`
    """
    for upload in uploads:
        validate_image(upload, max_size)

    if not uploads:
        return []

    results = await asyncio.gather(
        *(storage.store(upload) for upload in uploads),
        return_exceptions=True,
    )

    stored = [r for r in results if isinstance(r, UploadedAsset)]
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        await discard_uploads(storage, stored)
        raise failures[0]

    logger.info("Stored %d image(s) via %s", len(stored), storage.name)
    return stored


async def discard_uploads(storage: MediaStorage, assets: Sequence[UploadedAsset]) -> None:
    """
    Remove stored images whose listing write failed.

    Best-effort: a failed delete is logged and skipped so the original
    error still reaches the client.
    """
    for asset in assets:
        try:
            await storage.delete(asset)
        except Exception as e:
            logger.warning(
                "Failed to discard uploaded image %s: %s",
                asset.public_id or asset.filename or asset.original_name,
                str(e),
            )
