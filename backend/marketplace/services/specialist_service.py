"""
Specialist Marketplace Backend — Specialist Service (Listing Lifecycle)
========================================================================

What:  Create, read, update, publish and soft-delete marketplace listings,
       together with their service offerings and media slots.
Why:   All listing business rules live here, independent of HTTP: slug
       assignment, price derivation, media slot replacement, soft delete.
How:   Composes the slug service and pricing helpers with SQLAlchemy
       queries on the session it is handed.
Who:   Called by routes/specialists.py. Image bytes are stored by the route
       (see storage_base.store_uploads) before this service runs; the service
       only records the resulting UploadedAsset locators.

Lifecycle Flow (POST /api/specialists):
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────┐
    │ Resolve  │───▶│ Store images│───▶│ Slug + price │───▶│ Persist  │
    │ payload  │    │ (concurrent)│    │ derivation   │    │ (1 flush)│
    └──────────┘    └─────────────┘    └──────────────┘    └──────────┘

    On failure after images were stored the route discards them.

Transactions:
    Operations flush but never commit. Write routes call commit() once at
    the end; the request-scoped session (deps.get_db_session) rolls back on
    any error, so a listing is never left half-written (e.g. offerings
    without media).

Error Handling Strategy:
    Application errors (NotFoundError, ...) propagate as-is.
    IntegrityError → ConflictError (a concurrent write took the same slug).
    Any other SQLAlchemyError → DatabaseError (generic message, details logged).
"""

import logging
import math
import uuid
from contextlib import contextmanager
from typing import Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.database import utcnow
from marketplace.exceptions import (
    ConflictError,
    DatabaseError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
)
from marketplace.models import Media, MediaType, ServiceOffering, Specialist
from marketplace.schemas.specialist import (
    MAX_MEDIA_SLOTS,
    PaginationMeta,
    ServiceOfferingInput,
    SpecialistCreate,
    SpecialistListData,
    SpecialistResponse,
    SpecialistUpdate,
)
from marketplace.services.pricing import compute_final_price, derive_final_price, to_decimal
from marketplace.services.slug_service import ensure_unique_slug, slugify
from marketplace.services.storage_base import UploadedAsset, resolve_file_path

logger = logging.getLogger(__name__)

STATUS_FILTERS = ("all", "draft", "published")


def _parse_id(specialist_id) -> uuid.UUID:
    # A malformed id can't match any row: report it as not found
    if isinstance(specialist_id, uuid.UUID):
        return specialist_id
    try:
        return uuid.UUID(str(specialist_id))
    except ValueError:
        raise NotFoundError(resource="specialist", resource_id=str(specialist_id))


def _media_from_upload(specialist_id: uuid.UUID, asset: UploadedAsset, slot: int) -> Media:
    return Media(
        specialist_id=specialist_id,
        file_name=asset.original_name or "image",
        file_path=resolve_file_path(asset),
        file_size=asset.size or 0,
        mime_type=asset.mime_type,
        media_type=MediaType.IMAGE,
        display_order=slot,
        uploaded_at=utcnow(),
    )


def _media_from_url(specialist_id: uuid.UUID, url: str, slot: int) -> Media:
    # Uploaded straight to the CDN by the client; size and type are unknown
    return Media(
        specialist_id=specialist_id,
        file_name=f"image-{slot + 1}",
        file_path=url,
        file_size=0,
        mime_type=None,
        media_type=MediaType.IMAGE,
        display_order=slot,
        uploaded_at=utcnow(),
    )


@contextmanager
def _price_errors() -> Iterator[None]:
    try:
        yield
    except ValueError as e:
        raise ValidationError(message=str(e), field="platform_fee")


def _offerings(specialist_id: uuid.UUID, items: Sequence[ServiceOfferingInput]) -> List[ServiceOffering]:
    return [
        ServiceOffering(
            specialist_id=specialist_id,
            name=item.name or "",
            description=item.description or "",
        )
        for item in items
    ]


class SpecialistService:
    """
    Business logic layer for listing operations.

    Stateless: every method receives the session to work in.
    Every read filters out soft-deleted rows (deleted_at IS NOT NULL).
    """

    @contextmanager
    def _database_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except MarketplaceError:
            raise
        except IntegrityError as e:
            logger.warning("Integrity error during %s: %s", operation, str(e.orig))
            raise ConflictError(context={"operation": operation})
        except SQLAlchemyError as e:
            logger.error("Database error during %s: %s", operation, str(e), exc_info=True)
            raise DatabaseError(context={"operation": operation, "error_type": type(e).__name__})

    async def _get_active(self, db: AsyncSession, specialist_id: uuid.UUID) -> Specialist:
        result = await db.execute(
            select(Specialist).where(
                Specialist.id == specialist_id,
                Specialist.deleted_at.is_(None),
            )
        )
        specialist = result.scalar_one_or_none()
        if specialist is None:
            raise NotFoundError(resource="specialist", resource_id=str(specialist_id))
        return specialist

    async def _load_response(self, db: AsyncSession, specialist_id: uuid.UUID) -> SpecialistResponse:
        # populate_existing: collections may be stale after bulk slot deletes
        result = await db.execute(
            select(Specialist)
            .options(
                selectinload(Specialist.service_offerings),
                selectinload(Specialist.media),
            )
            .where(Specialist.id == specialist_id, Specialist.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        specialist = result.scalar_one_or_none()
        if specialist is None:
            raise NotFoundError(resource="specialist", resource_id=str(specialist_id))
        return SpecialistResponse.model_validate(specialist)

    # ── Queries ───────────────────────────────────────────────────────────

    async def list_specialists(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 10,
        status: str = "all",
        search: str = "",
    ) -> SpecialistListData:
        """
        One page of listings, newest first.

        Args:
            page: 1-based page number
            limit: page size
            status: "all", "draft" (is_draft) or "published" (not is_draft)
            search: case-insensitive substring matched against title,
                    description and slug; blank means no filter

        Query plan:
            SELECT COUNT(*) ... WHERE deleted_at IS NULL [AND filters]
            SELECT ... ORDER BY created_at DESC OFFSET (page-1)*limit LIMIT limit
            + two selectin loads for offerings and media
        """
        if page < 1 or limit < 1:
            raise ValidationError(message="page and limit must be positive integers", field="page")
        if status not in STATUS_FILTERS:
            raise ValidationError(
                message=f"status must be one of: {', '.join(STATUS_FILTERS)}",
                field="status",
            )

        conditions = [Specialist.deleted_at.is_(None)]
        if status == "draft":
            conditions.append(Specialist.is_draft.is_(True))
        elif status == "published":
            conditions.append(Specialist.is_draft.is_(False))

        term = (search or "").strip()
        if term:
            conditions.append(
                or_(
                    Specialist.title.icontains(term, autoescape=True),
                    Specialist.description.icontains(term, autoescape=True),
                    Specialist.slug.icontains(term, autoescape=True),
                )
            )

        with self._database_errors("list specialists"):
            total = await db.scalar(
                select(func.count()).select_from(Specialist).where(*conditions)
            ) or 0

            result = await db.execute(
                select(Specialist)
                .options(
                    selectinload(Specialist.service_offerings),
                    selectinload(Specialist.media),
                )
                .where(*conditions)
                .order_by(Specialist.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            specialists = list(result.scalars().all())

        return SpecialistListData(
            specialists=[SpecialistResponse.model_validate(s) for s in specialists],
            pagination=PaginationMeta(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )

    async def get_specialist(self, db: AsyncSession, specialist_id) -> SpecialistResponse:
        """
        Raises:
            NotFoundError: unknown, malformed or soft-deleted id (→ 404)
        """
        specialist_uuid = _parse_id(specialist_id)
        with self._database_errors("get specialist"):
            return await self._load_response(db, specialist_uuid)

    # ── Commands ──────────────────────────────────────────────────────────

    async def create_specialist(
        self,
        db: AsyncSession,
        payload: SpecialistCreate,
        uploads: Sequence[UploadedAsset] = (),
    ) -> SpecialistResponse:
        """
        Create a listing with its offerings and media.

        Workflow:
            1. Slug from payload.slug (if given) or the title, made unique
            2. final_price = base_price + platform_fee
            3. Insert the listing (flush assigns the id)
            4. Insert media for stored uploads (slot = upload index), then for
               at most three media_urls (slot = URL index, blanks skipped),
               then the service offerings, in a single flush
            5. Reload with relations

        Raises:
            ConflictError: the slug was taken between check and insert
            DatabaseError: any other storage failure
        """
        with self._database_errors("create specialist"):
            base_slug = slugify(payload.slug) if payload.slug else slugify(payload.title)
            slug = await ensure_unique_slug(db, base_slug)
            with _price_errors():
                final_price = compute_final_price(payload.base_price, payload.platform_fee)

            specialist = Specialist(
                title=payload.title,
                slug=slug,
                description=payload.description,
                base_price=to_decimal(payload.base_price),
                platform_fee=to_decimal(payload.platform_fee),
                final_price=to_decimal(final_price),
                duration_days=payload.duration_days,
                is_draft=payload.is_draft,
                verification_status=payload.verification_status,
                is_verified=payload.is_verified,
            )
            db.add(specialist)
            await db.flush()

            children = [
                _media_from_upload(specialist.id, asset, index)
                for index, asset in enumerate(uploads)
            ]
            children.extend(
                _media_from_url(specialist.id, url, index)
                for index, url in enumerate(payload.media_urls[:MAX_MEDIA_SLOTS])
                if url
            )
            children.extend(_offerings(specialist.id, payload.service_offerings))
            if children:
                db.add_all(children)
                await db.flush()

            logger.info(
                "Specialist %s created (slug=%s, media=%d, offerings=%d)",
                specialist.id,
                slug,
                len(children) - len(payload.service_offerings),
                len(payload.service_offerings),
            )
            return await self._load_response(db, specialist.id)

    async def update_specialist(
        self,
        db: AsyncSession,
        specialist_id,
        payload: SpecialistUpdate,
        slot_uploads: Optional[Mapping[int, UploadedAsset]] = None,
    ) -> SpecialistResponse:
        """
        Apply a partial update.

        Rules:
            - A changed title regenerates the slug (unique, excluding self)
            - base_price / platform_fee recompute final_price; the missing
              input is taken from the stored row
            - service_offerings, when supplied, replace the whole set
            - slot_uploads[i] and media_urls[i] (i < 3) replace slot i only;
              files are applied first, then URLs

        Raises:
            NotFoundError: unknown or soft-deleted listing
        """
        specialist_uuid = _parse_id(specialist_id)

        with self._database_errors("update specialist"):
            specialist = await self._get_active(db, specialist_uuid)
            changes = payload.scalar_changes()

            new_title = changes.get("title")
            if new_title and new_title != specialist.title:
                specialist.slug = await ensure_unique_slug(
                    db, slugify(new_title), exclude_id=specialist.id
                )

            with _price_errors():
                final_price = derive_final_price(specialist.base_price, specialist.platform_fee, changes)
            if final_price is not None:
                changes["final_price"] = final_price
                for field in ("base_price", "platform_fee", "final_price"):
                    if field in changes:
                        changes[field] = to_decimal(changes[field])

            for field, value in changes.items():
                setattr(specialist, field, value)
            await db.flush()

            if "service_offerings" in payload.model_fields_set:
                await db.execute(
                    delete(ServiceOffering).where(ServiceOffering.specialist_id == specialist.id)
                )
                offerings = _offerings(specialist.id, payload.service_offerings or [])
                if offerings:
                    db.add_all(offerings)

            for slot, asset in sorted((slot_uploads or {}).items()):
                await self._replace_slot(db, specialist.id, slot, _media_from_upload(specialist.id, asset, slot))

            for slot, url in enumerate((payload.media_urls or [])[:MAX_MEDIA_SLOTS]):
                if url:
                    await self._replace_slot(db, specialist.id, slot, _media_from_url(specialist.id, url, slot))

            await db.flush()
            logger.info("Specialist %s updated (fields=%s)", specialist.id, sorted(changes))
            return await self._load_response(db, specialist.id)

    async def commit(self, db: AsyncSession) -> None:
        """
        Commit the request transaction so write failures surface before the
        response is sent.
        """
        with self._database_errors("commit"):
            await db.commit()

    async def _replace_slot(self, db: AsyncSession, specialist_id: uuid.UUID, slot: int, media: Media) -> None:
        await db.execute(
            delete(Media).where(
                Media.specialist_id == specialist_id,
                Media.display_order == slot,
            )
        )
        db.add(media)

    async def delete_specialist(self, db: AsyncSession, specialist_id) -> None:
        """
        Soft delete: set deleted_at. Offerings and media rows are kept.

        Raises:
            NotFoundError: unknown or already deleted listing
        """
        specialist_uuid = _parse_id(specialist_id)
        with self._database_errors("delete specialist"):
            specialist = await self._get_active(db, specialist_uuid)
            specialist.deleted_at = utcnow()
            await db.flush()
        logger.info("Specialist %s soft-deleted", specialist_uuid)

    async def toggle_publish(
        self,
        db: AsyncSession,
        specialist_id,
        is_draft: Optional[bool] = None,
    ) -> SpecialistResponse:
        """Set is_draft explicitly, or flip it when is_draft is None."""
        specialist_uuid = _parse_id(specialist_id)
        with self._database_errors("toggle publish"):
            specialist = await self._get_active(db, specialist_uuid)
            specialist.is_draft = (not specialist.is_draft) if is_draft is None else is_draft
            await db.flush()
            logger.info("Specialist %s is_draft=%s", specialist.id, specialist.is_draft)
            return await self._load_response(db, specialist.id)


# ── Singleton Instance ────────────────────────────────────────────────────
specialist_service = SpecialistService()
