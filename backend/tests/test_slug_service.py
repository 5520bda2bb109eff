"""
Specialist Marketplace Backend — Slug Service Tests
====================================================

Test Strategy:
    ✅ Normalization rules (case, punctuation runs, edge dashes)
    ✅ Suffix sequence on collision (mocked existence checks)
    ✅ Timestamp fallback after 100 attempts
    ✅ Soft-deleted listings and the excluded id don't count (real SQLite)
"""

import uuid
from decimal import Decimal

import pytest

from marketplace.database import utcnow
from marketplace.models import Specialist
from marketplace.services.slug_service import (
    FALLBACK_SLUG_BASE,
    MAX_SLUG_ATTEMPTS,
    ensure_unique_slug,
    slug_exists,
    slugify,
)


def _listing(slug: str, **overrides) -> Specialist:
    values = dict(
        title=slug.replace("-", " ").title(),
        slug=slug,
        base_price=Decimal("10.00"),
        final_price=Decimal("10.00"),
        duration_days=1,
    )
    values.update(overrides)
    return Specialist(**values)


class TestSlugify:
    def test_lowercases_and_dashes(self):
        assert slugify("Tax Advisor") == "tax-advisor"

    def test_collapses_runs_of_punctuation(self):
        assert slugify("Tax -- & -- Advisor!!") == "tax-advisor"

    def test_strips_edge_dashes(self):
        assert slugify("  !Hello World?  ") == "hello-world"

    def test_keeps_digits(self):
        assert slugify("24/7 Support v2") == "24-7-support-v2"

    def test_non_latin_text_normalizes_to_empty(self):
        assert slugify("日本語") == ""

    def test_long_titles_are_truncated_without_trailing_dash(self):
        slug = slugify("a" * 239 + " b" * 10)
        assert len(slug) <= 240
        assert not slug.endswith("-")


class TestEnsureUniqueSlugMocked:
    @pytest.mark.asyncio
    async def test_free_base_is_used(self, mock_db_session):
        mock_db_session.scalar.return_value = None
        assert await ensure_unique_slug(mock_db_session, "tax-advisor") == "tax-advisor"
        assert mock_db_session.scalar.await_count == 1

    @pytest.mark.asyncio
    async def test_suffixes_count_up(self, mock_db_session):
        taken = uuid.uuid4()
        mock_db_session.scalar.side_effect = [taken, taken, None]
        assert await ensure_unique_slug(mock_db_session, "tax-advisor") == "tax-advisor-2"

    @pytest.mark.asyncio
    async def test_falls_back_to_timestamp(self, mock_db_session):
        mock_db_session.scalar.return_value = uuid.uuid4()
        slug = await ensure_unique_slug(mock_db_session, "busy")

        assert mock_db_session.scalar.await_count == MAX_SLUG_ATTEMPTS
        prefix, _, millis = slug.rpartition("-")
        assert prefix == "busy"
        assert millis.isdigit() and len(millis) >= 13

    @pytest.mark.asyncio
    async def test_empty_base_uses_fallback(self, mock_db_session):
        mock_db_session.scalar.return_value = None
        assert await ensure_unique_slug(mock_db_session, "") == FALLBACK_SLUG_BASE


class TestEnsureUniqueSlugDatabase:
    @pytest.mark.asyncio
    async def test_existing_slug_gets_suffix(self, db_session):
        db_session.add(_listing("tax-advisor"))
        await db_session.flush()

        assert await ensure_unique_slug(db_session, "tax-advisor") == "tax-advisor-1"

    @pytest.mark.asyncio
    async def test_soft_deleted_slug_is_reusable(self, db_session):
        db_session.add(_listing("tax-advisor", deleted_at=utcnow()))
        await db_session.flush()

        assert await slug_exists(db_session, "tax-advisor") is False
        assert await ensure_unique_slug(db_session, "tax-advisor") == "tax-advisor"

    @pytest.mark.asyncio
    async def test_excluded_listing_does_not_collide_with_itself(self, db_session):
        listing = _listing("tax-advisor")
        db_session.add(listing)
        await db_session.flush()

        assert await ensure_unique_slug(db_session, "tax-advisor", exclude_id=listing.id) == "tax-advisor"
