"""
Specialist Marketplace Backend — Upload Routes
===============================================

What:  Direct-upload signing and local file serving.

Endpoints:
    GET /api/upload/cloudinary-signature   signature for a browser → Cloudinary upload
    GET /uploads/{filename}                images written by LocalDiskStorage
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from marketplace.config import Settings
from marketplace.deps import get_media_storage, get_settings
from marketplace.exceptions import NotFoundError
from marketplace.schemas.specialist import ErrorResponse, SuccessEnvelope, UploadSignatureData
from marketplace.services.cloudinary_service import create_upload_signature
from marketplace.services.file_service import LocalDiskStorage
from marketplace.services.storage_base import MediaStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Uploads"])


@router.get(
    "/api/upload/cloudinary-signature",
    response_model=SuccessEnvelope[UploadSignatureData],
    summary="Sign a direct Cloudinary upload",
    responses={500: {"model": ErrorResponse, "description": "Cloudinary is not configured"}},
)
async def cloudinary_signature(
    app_settings: Settings = Depends(get_settings),
) -> SuccessEnvelope[UploadSignatureData]:
    signed = create_upload_signature(app_settings)
    return SuccessEnvelope(data=UploadSignatureData(**signed))


@router.get(
    "/uploads/{filename:path}",
    response_class=FileResponse,
    summary="Serve a locally stored image",
    responses={404: {"model": ErrorResponse}},
)
async def serve_upload(
    filename: str,
    storage: MediaStorage = Depends(get_media_storage),
) -> FileResponse:
    if not isinstance(storage, LocalDiskStorage):
        raise NotFoundError(resource="file", resource_id=filename)

    path = storage.resolve(filename)
    if path is None or not path.is_file():
        raise NotFoundError(resource="file", resource_id=filename)
    return FileResponse(path)
