"""
Specialist Marketplace Backend — Specialist Service Tests
==========================================================

What:  Lifecycle rules exercised against a real SQLite database.

Test Strategy:
    ✅ Create: slug, final price, media from uploads and URLs, offerings
    ✅ Update: slug regeneration, price recomputation, slot replacement,
               offering replacement
    ✅ List: soft-delete filter, status filter, search, pagination, order
    ✅ Publish toggle and soft delete
    ✅ Storage errors: unique index violation → ConflictError
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from marketplace.exceptions import ConflictError, DatabaseError, NotFoundError, ValidationError
from marketplace.models import Specialist
from marketplace.schemas.specialist import SpecialistCreate, SpecialistUpdate
from marketplace.services.specialist_service import specialist_service
from marketplace.services.storage_base import UploadedAsset


def _create(**overrides) -> SpecialistCreate:
    values = {"title": "Tax Advisor", "base_price": 100, "platform_fee": 15, "duration_days": 7}
    values.update(overrides)
    return SpecialistCreate.model_validate(values)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_derives_slug_and_price(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create())

        assert created.slug == "tax-advisor"
        assert created.final_price == 115.0
        assert created.platform_fee == 15.0
        assert created.is_draft is True
        assert created.verification_status.value == "pending"
        assert created.media == []
        assert created.service_offerings == []

    @pytest.mark.asyncio
    async def test_same_title_gets_suffixed_slug(self, db_session):
        await specialist_service.create_specialist(db_session, _create())
        second = await specialist_service.create_specialist(db_session, _create())
        third = await specialist_service.create_specialist(db_session, _create())

        assert second.slug == "tax-advisor-1"
        assert third.slug == "tax-advisor-2"

    @pytest.mark.asyncio
    async def test_supplied_slug_is_normalized(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create(slug="My Custom Slug"))
        assert created.slug == "my-custom-slug"

    @pytest.mark.asyncio
    async def test_fee_defaults_to_zero_in_final_price(self, db_session):
        created = await specialist_service.create_specialist(
            db_session, _create(platform_fee=None, base_price="49.99")
        )
        assert created.platform_fee is None
        assert created.final_price == 49.99

    @pytest.mark.asyncio
    async def test_final_price_over_column_limit(self, db_session):
        with pytest.raises(ValidationError, match="Final price must not exceed"):
            await specialist_service.create_specialist(
                db_session, _create(base_price=99_999_999, platform_fee=5)
            )

    @pytest.mark.asyncio
    async def test_media_from_uploads_and_urls(self, db_session):
        uploads = [
            UploadedAsset(original_name="front.png", size=120, mime_type="image/png",
                          secure_url="https://cdn.example/front.png"),
            UploadedAsset(original_name="back.png", size=80, mime_type="image/png",
                          filename="abc.png", path="/srv/uploads/abc.png"),
        ]
        created = await specialist_service.create_specialist(
            db_session,
            _create(media_urls=["https://cdn.example/1.jpg", "", "https://cdn.example/3.jpg",
                                "https://cdn.example/ignored.jpg"]),
            uploads,
        )

        paths = sorted((m.display_order, m.file_path) for m in created.media)
        assert paths == [
            (0, "https://cdn.example/1.jpg"),
            (0, "https://cdn.example/front.png"),
            (1, "/uploads/abc.png"),
            (2, "https://cdn.example/3.jpg"),
        ]
        url_media = [m for m in created.media if m.file_name.startswith("image-")]
        assert {m.file_name for m in url_media} == {"image-1", "image-3"}
        assert all(m.file_size == 0 and m.mime_type is None for m in url_media)

    @pytest.mark.asyncio
    async def test_service_offerings_default_text(self, db_session):
        created = await specialist_service.create_specialist(
            db_session,
            _create(service_offerings=[{"name": "Filing"}, {"description": "Audit support"}]),
        )
        offerings = {(o.name, o.description) for o in created.service_offerings}
        assert offerings == {("Filing", ""), ("", "Audit support")}

    @pytest.mark.asyncio
    async def test_unique_index_violation_becomes_conflict(self, db_session):
        db_session.add(Specialist(
            title="Tax Advisor", slug="tax-advisor", base_price=Decimal("1"),
            final_price=Decimal("1"), duration_days=1,
        ))
        await db_session.flush()

        # Simulate the race: the existence check saw the slug as free
        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(
                "marketplace.services.specialist_service.ensure_unique_slug",
                AsyncMock(return_value="tax-advisor"),
            )
            with pytest.raises(ConflictError):
                await specialist_service.create_specialist(db_session, _create())


class TestRead:
    @pytest.mark.asyncio
    async def test_get_unknown_id(self, db_session):
        with pytest.raises(NotFoundError, match="Specialist not found"):
            await specialist_service.get_specialist(db_session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_get_malformed_id_is_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            await specialist_service.get_specialist(db_session, "not-a-uuid")

    @pytest.mark.asyncio
    async def test_list_filters_status_and_deleted(self, db_session):
        draft = await specialist_service.create_specialist(db_session, _create(title="Draft One"))
        published = await specialist_service.create_specialist(
            db_session, _create(title="Live One", is_draft=False)
        )
        gone = await specialist_service.create_specialist(db_session, _create(title="Gone One"))
        await specialist_service.delete_specialist(db_session, gone.id)

        everything = await specialist_service.list_specialists(db_session)
        drafts = await specialist_service.list_specialists(db_session, status="draft")
        live = await specialist_service.list_specialists(db_session, status="published")

        assert {s.id for s in everything.specialists} == {draft.id, published.id}
        assert [s.id for s in drafts.specialists] == [draft.id]
        assert [s.id for s in live.specialists] == [published.id]

    @pytest.mark.asyncio
    async def test_list_is_newest_first_and_paginated(self, db_session):
        ids = []
        for n in range(5):
            created = await specialist_service.create_specialist(db_session, _create(title=f"Listing {n}"))
            ids.append(created.id)

        page = await specialist_service.list_specialists(db_session, page=2, limit=2)

        assert [s.id for s in page.specialists] == [ids[2], ids[1]]
        assert page.pagination.total == 5
        assert page.pagination.total_pages == 3
        assert page.pagination.page == 2

    @pytest.mark.asyncio
    async def test_list_search_is_case_insensitive(self, db_session):
        await specialist_service.create_specialist(
            db_session, _create(title="Yoga Coach", description="Morning VINYASA sessions")
        )
        await specialist_service.create_specialist(db_session, _create(title="Tax Advisor"))

        by_description = await specialist_service.list_specialists(db_session, search="vinyasa")
        by_slug = await specialist_service.list_specialists(db_session, search="yoga-co")
        wildcard = await specialist_service.list_specialists(db_session, search="%")

        assert [s.title for s in by_description.specialists] == ["Yoga Coach"]
        assert [s.title for s in by_slug.specialists] == ["Yoga Coach"]
        assert wildcard.specialists == []

    @pytest.mark.asyncio
    async def test_list_rejects_unknown_status(self, db_session):
        with pytest.raises(ValidationError, match="status"):
            await specialist_service.list_specialists(db_session, status="archived")

    @pytest.mark.asyncio
    async def test_empty_list_has_zero_pages(self, db_session):
        result = await specialist_service.list_specialists(db_session)
        assert result.specialists == []
        assert result.pagination.total == 0
        assert result.pagination.total_pages == 0


class TestUpdate:
    @pytest.mark.asyncio
    async def test_title_change_regenerates_slug(self, db_session):
        await specialist_service.create_specialist(db_session, _create(title="Senior Tax Advisor"))
        created = await specialist_service.create_specialist(db_session, _create())

        updated = await specialist_service.update_specialist(
            db_session, created.id, SpecialistUpdate(title="Senior Tax Advisor")
        )
        assert updated.slug == "senior-tax-advisor-1"

    @pytest.mark.asyncio
    async def test_same_title_keeps_slug(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create())
        updated = await specialist_service.update_specialist(
            db_session, created.id, SpecialistUpdate(title="Tax Advisor", description="new")
        )
        assert updated.slug == "tax-advisor"
        assert updated.description == "new"

    @pytest.mark.asyncio
    async def test_fee_only_update_recomputes_final_price(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create())
        updated = await specialist_service.update_specialist(
            db_session, created.id, SpecialistUpdate.model_validate({"platform_fee": "20"})
        )
        assert updated.base_price == 100.0
        assert updated.final_price == 120.0

    @pytest.mark.asyncio
    async def test_fee_update_over_column_limit(self, db_session):
        created = await specialist_service.create_specialist(
            db_session, _create(base_price=99_999_999, platform_fee=0)
        )
        with pytest.raises(ValidationError, match="Final price must not exceed"):
            await specialist_service.update_specialist(
                db_session, created.id, SpecialistUpdate.model_validate({"platform_fee": "5"})
            )

    @pytest.mark.asyncio
    async def test_unrelated_update_keeps_prices(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create())
        updated = await specialist_service.update_specialist(
            db_session, created.id, SpecialistUpdate(duration_days=14)
        )
        assert updated.duration_days == 14
        assert updated.final_price == 115.0

    @pytest.mark.asyncio
    async def test_offerings_are_replaced(self, db_session):
        created = await specialist_service.create_specialist(
            db_session, _create(service_offerings=[{"name": "Old"}])
        )
        updated = await specialist_service.update_specialist(
            db_session, created.id,
            SpecialistUpdate.model_validate({"service_offerings": [{"name": "New A"}, {"name": "New B"}]}),
        )
        assert sorted(o.name for o in updated.service_offerings) == ["New A", "New B"]

    @pytest.mark.asyncio
    async def test_omitted_offerings_are_kept(self, db_session):
        created = await specialist_service.create_specialist(
            db_session, _create(service_offerings=[{"name": "Keep"}])
        )
        updated = await specialist_service.update_specialist(
            db_session, created.id, SpecialistUpdate(description="changed")
        )
        assert [o.name for o in updated.service_offerings] == ["Keep"]

    @pytest.mark.asyncio
    async def test_slot_upload_replaces_only_its_slot(self, db_session):
        created = await specialist_service.create_specialist(
            db_session,
            _create(media_urls=[
                "https://cdn.example/0.jpg",
                "https://cdn.example/1.jpg",
                "https://cdn.example/2.jpg",
            ]),
        )
        replacement = UploadedAsset(original_name="new.png", size=10, mime_type="image/png",
                                    secure_url="https://cdn.example/new.png")

        updated = await specialist_service.update_specialist(
            db_session, created.id, SpecialistUpdate(), {1: replacement}
        )

        slots = {m.display_order: m.file_path for m in updated.media}
        assert slots == {
            0: "https://cdn.example/0.jpg",
            1: "https://cdn.example/new.png",
            2: "https://cdn.example/2.jpg",
        }

    @pytest.mark.asyncio
    async def test_media_url_replaces_slot_and_skips_blanks(self, db_session):
        created = await specialist_service.create_specialist(
            db_session,
            _create(media_urls=["https://cdn.example/0.jpg", "https://cdn.example/1.jpg"]),
        )
        updated = await specialist_service.update_specialist(
            db_session, created.id,
            SpecialistUpdate.model_validate({"media_urls": [None, "https://cdn.example/1b.jpg"]}),
        )
        slots = {m.display_order: m.file_path for m in updated.media}
        assert slots == {0: "https://cdn.example/0.jpg", 1: "https://cdn.example/1b.jpg"}

    @pytest.mark.asyncio
    async def test_update_deleted_listing_is_not_found(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create())
        await specialist_service.delete_specialist(db_session, created.id)

        with pytest.raises(NotFoundError):
            await specialist_service.update_specialist(db_session, created.id, SpecialistUpdate(title="X"))


class TestPublishAndDelete:
    @pytest.mark.asyncio
    async def test_toggle_flips_draft_flag(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create())

        published = await specialist_service.toggle_publish(db_session, created.id)
        unpublished = await specialist_service.toggle_publish(db_session, created.id)

        assert published.is_draft is False
        assert unpublished.is_draft is True

    @pytest.mark.asyncio
    async def test_explicit_state_is_set(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create())
        result = await specialist_service.toggle_publish(db_session, created.id, is_draft=True)
        assert result.is_draft is True

    @pytest.mark.asyncio
    async def test_soft_delete_hides_listing(self, db_session):
        created = await specialist_service.create_specialist(db_session, _create())
        await specialist_service.delete_specialist(db_session, created.id)

        with pytest.raises(NotFoundError):
            await specialist_service.get_specialist(db_session, created.id)
        with pytest.raises(NotFoundError):
            await specialist_service.delete_specialist(db_session, created.id)

        row = await db_session.get(Specialist, created.id)
        assert row is not None and row.deleted_at is not None


class TestErrorTranslation:
    @pytest.mark.asyncio
    async def test_operational_error_becomes_database_error(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
        with pytest.raises(DatabaseError):
            await specialist_service.get_specialist(mock_db_session, uuid.uuid4())
