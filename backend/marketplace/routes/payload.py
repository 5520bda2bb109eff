"""
Specialist Marketplace Backend — Request Body Resolution
=========================================================

What:  Reads a create/update request body once, whatever its encoding,
       and resolves it into SpecialistCreate / SpecialistUpdate plus the
       uploaded files.
Why:   Clients send either JSON or multipart/form-data. Multipart clients
       may put the structured fields (service_offerings, media_urls) into a
       `data` form field holding a JSON object.

Body variants:
    JsonBody       application/json (or an empty body)
    MultipartBody  multipart/form-data or application/x-www-form-urlencoded;
                   text fields plus files grouped by field name
                   (repeated keys and `name[]` keys collect into lists)

Field merge:
    Plain fields first, then the keys of the parsed `data` object on top.
    `data` itself is never passed on.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from fastapi import Request
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile

from marketplace.exceptions import ValidationError
from marketplace.schemas.specialist import (
    SpecialistCreate,
    SpecialistUpdate,
    to_validation_error,
)
from marketplace.services.storage_base import IncomingFile

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


@dataclass
class JsonBody:
    fields: Dict[str, Any]


@dataclass
class MultipartBody:
    fields: Dict[str, Any]
    files: Dict[str, List[UploadFile]] = field(default_factory=dict)


RequestBody = Union[JsonBody, MultipartBody]


def _field_name(key: str) -> str:
    return key[:-2] if key.endswith("[]") else key


async def read_body(request: Request) -> RequestBody:
    """
    Read the request body into a JsonBody or MultipartBody.

    Raises:
        ValidationError: malformed JSON, or JSON that is not an object
    """
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        values: Dict[str, List[str]] = {}
        list_fields = set()
        files: Dict[str, List[UploadFile]] = {}
        for key, value in form.multi_items():
            name = _field_name(key)
            if isinstance(value, UploadFile):
                # Browsers send an empty part for an untouched file input
                if value.filename:
                    files.setdefault(name, []).append(value)
                continue
            if name != key:
                list_fields.add(name)
            values.setdefault(name, []).append(value)

        # Repeated keys and "name[]" keys become lists, everything else a scalar
        fields: Dict[str, Any] = {
            name: items if name in list_fields or len(items) > 1 else items[0]
            for name, items in values.items()
        }
        return MultipartBody(fields=fields, files=files)

    raw = await request.body()
    if not raw.strip():
        return JsonBody(fields={})
    try:
        parsed = json.loads(raw)
    except ValueError:
        raise ValidationError(message="Malformed JSON body", field="body")
    if not isinstance(parsed, dict):
        raise ValidationError(message="Request body must be a JSON object", field="body")
    return JsonBody(fields=parsed)


def merged_fields(body: RequestBody) -> Dict[str, Any]:
    """Plain fields overlaid with the decoded `data` object, if any."""
    fields = dict(body.fields)
    data = fields.pop("data", None)
    if data is None or data == "":
        return fields

    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError:
            raise ValidationError(message="Invalid data format", field="data")
    if not isinstance(data, dict):
        raise ValidationError(message="Invalid data format", field="data")

    fields.update(data)
    return fields


def resolve_create(body: RequestBody) -> SpecialistCreate:
    try:
        return SpecialistCreate.model_validate(merged_fields(body))
    except PydanticValidationError as e:
        raise to_validation_error(e)


def resolve_update(body: RequestBody) -> SpecialistUpdate:
    try:
        return SpecialistUpdate.model_validate(merged_fields(body))
    except PydanticValidationError as e:
        raise to_validation_error(e)


def files_for(body: RequestBody, name: str) -> List[UploadFile]:
    if isinstance(body, MultipartBody):
        return body.files.get(name, [])
    return []


async def read_upload(upload: UploadFile, max_size: int) -> IncomingFile:
    """
    Read one uploaded file into memory.

    The declared size (when the client sent one) is checked before reading,
    so oversized files are rejected without buffering them.
    """
    if upload.size is not None and upload.size > max_size:
        max_mb = max_size / (1024 * 1024)
        raise ValidationError(
            message=f"File '{upload.filename}' exceeds the maximum size of {max_mb:.0f}MB.",
            field="images",
            context={"size": upload.size, "max_size": max_size},
        )
    content = await upload.read()
    return IncomingFile(
        filename=upload.filename or "image",
        content=content,
        content_type=upload.content_type or "",
    )
