"""
Specialist Marketplace Backend — Slug Assignment
=================================================

What:  Derives a URL-safe slug from a listing title and makes it unique
       among listings that are not soft-deleted.
Who:   Called by SpecialistService on create, and on update when the
       title actually changes.

Algorithm:
    1. Normalize: lower-case, collapse every run of characters outside
       [a-z0-9] into a single "-", strip leading/trailing "-".
       "Tax Advisor!" → "tax-advisor"
    2. Try the base; if taken try base-1, base-2, ... (100 attempts total,
       one existence query each).
    3. Still colliding: fall back to base-<epoch millis>.

Concurrency:
    Check-then-insert is not atomic. Two requests with the same title can
    both see "tax-advisor" as free. The partial unique index on
    specialists.slug is the authoritative backstop; the losing insert is
    reported as a ConflictError and the client retries.
"""

import logging
import re
import time
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models import Specialist

logger = logging.getLogger(__name__)

MAX_SLUG_ATTEMPTS = 100

# Used when a title normalizes to nothing (e.g. "!!!" or non-Latin script)
FALLBACK_SLUG_BASE = "specialist"

# Leaves room for "-<epoch millis>" inside the 255-char column
MAX_SLUG_BASE_LENGTH = 240

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """Normalize free text into a slug base. May return an empty string."""
    slug = _NON_ALPHANUMERIC.sub("-", value.lower()).strip("-")
    return slug[:MAX_SLUG_BASE_LENGTH].rstrip("-")


async def slug_exists(
    db: AsyncSession,
    slug: str,
    exclude_id: Optional[uuid.UUID] = None,
) -> bool:
    """True if a non-deleted listing (other than exclude_id) already uses slug."""
    query = select(Specialist.id).where(
        Specialist.slug == slug,
        Specialist.deleted_at.is_(None),
    )
    if exclude_id is not None:
        query = query.where(Specialist.id != exclude_id)
    return await db.scalar(query.limit(1)) is not None


async def ensure_unique_slug(
    db: AsyncSession,
    base_slug: str,
    exclude_id: Optional[uuid.UUID] = None,
) -> str:
    """
    Return a slug that no other active listing uses right now.

    Args:
        db: Session used for the existence queries
        base_slug: Already-normalized base (see slugify)
        exclude_id: Listing being updated, so it never collides with itself

    Returns:
        base_slug, base_slug-N, or base_slug-<epoch millis>
    """
    base = base_slug or FALLBACK_SLUG_BASE
    candidate = base

    for suffix in range(1, MAX_SLUG_ATTEMPTS + 1):
        if not await slug_exists(db, candidate, exclude_id):
            return candidate
        candidate = f"{base}-{suffix}"

    fallback = f"{base}-{int(time.time() * 1000)}"
    logger.warning(
        "Slug '%s' still taken after %d attempts, using %s",
        base,
        MAX_SLUG_ATTEMPTS,
        fallback,
    )
    return fallback
