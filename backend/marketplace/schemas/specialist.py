"""
Specialist Marketplace Backend — Pydantic Request/Response Schemas
===================================================================

What:  The API contract for listings: validated inputs, serialized outputs
       and the `{status, data}` / `{status, message}` envelopes.
Why:   Request bodies arrive as JSON or as multipart form fields (every value
       a string). They are resolved once into SpecialistCreate /
       SpecialistUpdate, so the service layer only ever sees typed values.
Who:   Request models are built by routes/payload.py; response models are
       returned by SpecialistService and the route handlers.

Lenient parsing:
    Prices accept numbers or numeric strings ("150", " 150.50 ").
    duration_days accepts integers, integral floats and integer strings.
    Booleans accept true/false, 1/0, yes/no (pydantic lax mode).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from marketplace.exceptions import ValidationError
from marketplace.models import MediaType, VerificationStatus
from marketplace.services.pricing import parse_price

# Maximum number of URL-based media slots (image0..image2 / media_urls[0..2])
MAX_MEDIA_SLOTS = 3

# duration_days is a 32-bit INTEGER column
MAX_DURATION_DAYS = 2_147_483_647


def _parse_title(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Title is required")
    title = value.strip()
    if len(title) > 255:
        raise ValueError("Title must be at most 255 characters")
    return title


def _parse_duration(value: Any) -> int:
    message = "Duration days must be a valid integer"
    if value is None or isinstance(value, bool):
        raise ValueError(message)
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValueError(message)
        number = int(value)
    else:
        text = str(value).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                as_float = float(text)
            except ValueError:
                raise ValueError(message)
            if not as_float.is_integer():
                raise ValueError(message)
            number = int(as_float)
    if number < 1:
        raise ValueError("Duration days must be at least 1")
    if number > MAX_DURATION_DAYS:
        raise ValueError(f"Duration days must be at most {MAX_DURATION_DAYS}")
    return number


def _parse_required_price(value: Any) -> float:
    price = parse_price(value, "Base price")
    if price is None:
        raise ValueError("Base price must be a valid number")
    return price


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class ServiceOfferingInput(BaseModel):
    """One entry of `service_offerings`; missing text fields default to ""."""

    name: str = ""
    description: str = ""

    model_config = {"extra": "ignore"}

    @field_validator("name", "description", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class _SpecialistInput(BaseModel):
    model_config = {"extra": "ignore"}

    @field_validator("media_urls", mode="before", check_fields=False)
    @classmethod
    def normalize_media_urls(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("service_offerings", mode="before", check_fields=False)
    @classmethod
    def normalize_offerings(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("platform_fee", mode="before", check_fields=False)
    @classmethod
    def parse_platform_fee(cls, v: Any) -> Optional[float]:
        return parse_price(v, "Platform fee")


class SpecialistCreate(_SpecialistInput):
    """
    What:  Validated input for POST /api/specialists.
    Who:   Built by routes/payload.resolve_create() from JSON or multipart.

    Required: title, base_price, duration_days.
    A supplied slug is normalized and de-duplicated like a title-derived one.
    """

    title: str = Field(default=None, validate_default=True)
    slug: Optional[str] = Field(default=None, description="Requested slug (normalized, made unique)")
    description: Optional[str] = None
    base_price: float = Field(default=None, validate_default=True)
    platform_fee: Optional[float] = None
    duration_days: int = Field(default=None, validate_default=True)
    is_draft: bool = True
    verification_status: VerificationStatus = VerificationStatus.PENDING
    is_verified: bool = False
    media_urls: List[Optional[str]] = Field(default_factory=list)
    service_offerings: List[ServiceOfferingInput] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v: Any) -> str:
        return _parse_title(v)

    @field_validator("base_price", mode="before")
    @classmethod
    def validate_base_price(cls, v: Any) -> float:
        return _parse_required_price(v)

    @field_validator("duration_days", mode="before")
    @classmethod
    def validate_duration(cls, v: Any) -> int:
        return _parse_duration(v)

    @field_validator("is_draft", mode="before")
    @classmethod
    def default_draft(cls, v: Any) -> Any:
        return True if v is None else v


class SpecialistUpdate(_SpecialistInput):
    """
    What:  Validated partial update for PUT /api/specialists/{id}.

    Only fields present in the request are applied (model_fields_set).
    Present fields are validated like on create; platform_fee may be set to
    null to clear it. Rating and purchase counters are system-managed and
    not accepted here.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    base_price: Optional[float] = None
    platform_fee: Optional[float] = None
    duration_days: Optional[int] = None
    is_draft: Optional[bool] = None
    verification_status: Optional[VerificationStatus] = None
    is_verified: Optional[bool] = None
    media_urls: Optional[List[Optional[str]]] = None
    service_offerings: Optional[List[ServiceOfferingInput]] = None

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v: Any) -> str:
        return _parse_title(v)

    @field_validator("base_price", mode="before")
    @classmethod
    def validate_base_price(cls, v: Any) -> float:
        return _parse_required_price(v)

    @field_validator("duration_days", mode="before")
    @classmethod
    def validate_duration(cls, v: Any) -> int:
        return _parse_duration(v)

    @field_validator("is_draft", "is_verified", "verification_status")
    @classmethod
    def reject_null(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    def scalar_changes(self) -> Dict[str, Any]:
        """Supplied scalar fields only (collections are applied separately)."""
        return self.model_dump(
            exclude_unset=True,
            exclude={"media_urls", "service_offerings"},
        )


class PublishToggleRequest(BaseModel):
    """Optional body for PATCH /publish; without it the draft flag is flipped."""

    is_draft: Optional[bool] = Field(default=None, description="Explicit draft state")


def to_validation_error(exc: PydanticValidationError) -> ValidationError:
    """
    Collapse pydantic's error list into our single-message ValidationError.

    The first error wins; custom validator messages ("Title is required")
    are passed through without pydantic's "Value error, " prefix.
    """
    errors = exc.errors()
    if not errors:
        return ValidationError(message="Validation failed")

    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    original = (first.get("ctx") or {}).get("error")
    if isinstance(original, Exception):
        message = str(original)
    elif first.get("type") == "missing":
        message = f"{field} is required"
    else:
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Validation failed")

    return ValidationError(
        message=message,
        field=field or None,
        context={"errors": len(errors)},
    )


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


def _decimal_to_float(v: Any) -> Any:
    return float(v) if isinstance(v, Decimal) else v


class ServiceOfferingResponse(BaseModel):
    id: uuid.UUID
    specialist_id: uuid.UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MediaResponse(BaseModel):
    id: uuid.UUID
    specialist_id: uuid.UUID
    file_name: str
    file_path: Optional[str] = Field(default=None, description="Public URL (or /uploads/ path) of the image")
    file_size: int
    mime_type: Optional[str] = None
    media_type: MediaType
    display_order: int = Field(description="Slot index; 0-2 are replaceable by update")
    uploaded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SpecialistResponse(BaseModel):
    """
    What:  Full listing representation, offerings and media included.
    Prices are serialized as JSON numbers.
    """

    id: uuid.UUID
    title: str
    slug: str
    description: Optional[str] = None
    base_price: float
    platform_fee: Optional[float] = None
    final_price: float
    duration_days: int
    is_draft: bool
    verification_status: VerificationStatus
    is_verified: bool
    average_rating: Optional[float] = None
    total_number_of_ratings: int
    purchases_count: int
    created_at: datetime
    updated_at: datetime
    service_offerings: List[ServiceOfferingResponse] = Field(default_factory=list)
    media: List[MediaResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @field_validator("base_price", "platform_fee", "final_price", "average_rating", mode="before")
    @classmethod
    def numeric_to_float(cls, v: Any) -> Any:
        return _decimal_to_float(v)


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(description="ceil(total / limit)")


class SpecialistListData(BaseModel):
    specialists: List[SpecialistResponse]
    pagination: PaginationMeta


class SpecialistData(BaseModel):
    specialist: SpecialistResponse


DataT = TypeVar("DataT")


class SuccessEnvelope(BaseModel, Generic[DataT]):
    """`{"status": "success", "data": ...}` wrapper for every success response."""

    status: Literal["success"] = "success"
    data: DataT


class ErrorResponse(BaseModel):
    """
    What:  Body of every error response.
    status is "fail" for client errors (4xx) and "error" for server errors.
    stack is only present outside production.
    """

    status: Literal["fail", "error"]
    message: str
    request_id: Optional[str] = None
    stack: Optional[str] = None


class UploadSignatureData(BaseModel):
    signature: str
    timestamp: int
    cloud_name: str
    api_key: str
    folder: str


class HealthResponse(BaseModel):
    status: str = Field(description="Always 'success' while the process serves requests")
    message: str
    timestamp: datetime
    version: str
    database: str = Field(description="connected | disconnected")
    storage: str = Field(description="<backend>:available | <backend>:unavailable")
    uptime_seconds: float
