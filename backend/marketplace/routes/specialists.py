"""
Specialist Marketplace Backend — Specialist Routes
===================================================

What:  CRUD + publish endpoints for marketplace listings.
How:   Thin handlers: resolve the body, store uploaded images, call
       SpecialistService, wrap the result in the success envelope.

Endpoints:
    GET    /api/specialists                 paginated list (page, limit, status, search)
    GET    /api/specialists/{id}            one listing
    POST   /api/specialists                 create (JSON or multipart, files under "images")
    PUT    /api/specialists/{id}            partial update (files under image0..image2)
    DELETE /api/specialists/{id}            soft delete (204)
    PATCH  /api/specialists/{id}/publish    toggle or set is_draft

Uploaded images are stored before the database write. If the write then
fails, the stored images are discarded and the original error is returned.
"""

import logging
from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import Settings
from marketplace.deps import get_db_session, get_media_storage, get_settings
from marketplace.exceptions import ValidationError
from marketplace.routes.payload import (
    files_for,
    read_body,
    read_upload,
    resolve_create,
    resolve_update,
)
from marketplace.schemas.specialist import (
    MAX_MEDIA_SLOTS,
    ErrorResponse,
    PublishToggleRequest,
    SpecialistData,
    SpecialistListData,
    SuccessEnvelope,
)
from marketplace.services.specialist_service import specialist_service
from marketplace.services.storage_base import (
    MediaStorage,
    UploadedAsset,
    discard_uploads,
    store_uploads,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/specialists", tags=["Specialists"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    404: {"model": ErrorResponse, "description": "Listing not found"},
}

_BODY_DOC = {
    "requestBody": {
        "content": {
            "application/json": {"schema": {"type": "object"}},
            "multipart/form-data": {"schema": {"type": "object"}},
        },
    },
}


@router.get(
    "",
    response_model=SuccessEnvelope[SpecialistListData],
    summary="List listings",
    responses={400: _ERRORS[400]},
)
async def list_specialists(
    page: int = Query(default=1, ge=1, description="1-based page number"),
    limit: int = Query(default=10, ge=1, description="Page size"),
    status_filter: Literal["all", "draft", "published"] = Query(default="all", alias="status"),
    search: str = Query(default="", description="Substring of title, description or slug"),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessEnvelope[SpecialistListData]:
    data = await specialist_service.list_specialists(
        db, page=page, limit=limit, status=status_filter, search=search
    )
    return SuccessEnvelope(data=data)


@router.get(
    "/{specialist_id}",
    response_model=SuccessEnvelope[SpecialistData],
    summary="Get one listing",
    responses={404: _ERRORS[404]},
)
async def get_specialist(
    specialist_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> SuccessEnvelope[SpecialistData]:
    specialist = await specialist_service.get_specialist(db, specialist_id)
    return SuccessEnvelope(data=SpecialistData(specialist=specialist))


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[SpecialistData],
    summary="Create a listing",
    responses={400: _ERRORS[400], 503: {"model": ErrorResponse}},
    openapi_extra=_BODY_DOC,
)
async def create_specialist(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    storage: MediaStorage = Depends(get_media_storage),
    app_settings: Settings = Depends(get_settings),
) -> SuccessEnvelope[SpecialistData]:
    body = await read_body(request)
    # Validate fields before any image is stored
    payload = resolve_create(body)

    files = files_for(body, "images")
    if len(files) > app_settings.max_upload_files:
        raise ValidationError(
            message=f"Too many files. At most {app_settings.max_upload_files} images are allowed.",
            field="images",
        )
    incoming = [await read_upload(f, app_settings.max_file_size) for f in files]
    assets = await store_uploads(storage, incoming, app_settings.max_file_size)

    try:
        specialist = await specialist_service.create_specialist(db, payload, assets)
        await specialist_service.commit(db)
    except Exception:
        await discard_uploads(storage, assets)
        raise

    return SuccessEnvelope(data=SpecialistData(specialist=specialist))


@router.put(
    "/{specialist_id}",
    response_model=SuccessEnvelope[SpecialistData],
    summary="Update a listing",
    responses=_ERRORS,
    openapi_extra=_BODY_DOC,
)
async def update_specialist(
    specialist_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    storage: MediaStorage = Depends(get_media_storage),
    app_settings: Settings = Depends(get_settings),
) -> SuccessEnvelope[SpecialistData]:
    body = await read_body(request)
    payload = resolve_update(body)

    # One file per slot field; extra files in the same field are ignored
    slots: List[int] = []
    incoming = []
    for slot in range(MAX_MEDIA_SLOTS):
        files = files_for(body, f"image{slot}")
        if files:
            slots.append(slot)
            incoming.append(await read_upload(files[0], app_settings.max_file_size))

    assets = await store_uploads(storage, incoming, app_settings.max_file_size)
    slot_uploads: Dict[int, UploadedAsset] = dict(zip(slots, assets))

    try:
        specialist = await specialist_service.update_specialist(
            db, specialist_id, payload, slot_uploads
        )
        await specialist_service.commit(db)
    except Exception:
        await discard_uploads(storage, assets)
        raise

    return SuccessEnvelope(data=SpecialistData(specialist=specialist))


@router.delete(
    "/{specialist_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Soft-delete a listing",
    responses={404: _ERRORS[404]},
)
async def delete_specialist(
    specialist_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await specialist_service.delete_specialist(db, specialist_id)
    await specialist_service.commit(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/{specialist_id}/publish",
    response_model=SuccessEnvelope[SpecialistData],
    summary="Publish or unpublish a listing",
    responses=_ERRORS,
)
async def toggle_publish(
    specialist_id: str,
    payload: Optional[PublishToggleRequest] = Body(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessEnvelope[SpecialistData]:
    is_draft = payload.is_draft if payload is not None else None
    specialist = await specialist_service.toggle_publish(db, specialist_id, is_draft)
    await specialist_service.commit(db)
    return SuccessEnvelope(data=SpecialistData(specialist=specialist))
