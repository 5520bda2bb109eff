"""
Specialist Marketplace Backend — Specialist SQLAlchemy Model
=============================================================

What:  ORM model for the `specialists` table, a marketplace listing.
Why:   Maps listing rows to Python objects for the lifecycle service.
Who:   Used by SpecialistService (CRUD) and the slug service (uniqueness checks).

Table Design Rationale:
    - UUID primary key: Non-sequential, globally unique
    - slug: Human-readable identifier derived from the title. Unique among
      rows that are not soft-deleted (partial unique index), so a deleted
      listing never blocks its title from being reused.
    - base_price / platform_fee / final_price: NUMERIC(10,2). final_price is
      derived (base + fee) and stored so listings can be sorted and filtered
      by what the customer pays.
    - is_draft: Two-state visibility lifecycle; new listings start as drafts.
    - deleted_at: Soft-delete marker. Reads filter on `deleted_at IS NULL`.

    Index on created_at DESC:
        The list endpoint always orders newest first.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base, utcnow


class VerificationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    UNDER_REVIEW = "under-review"


class Specialist(Base):
    """
    A marketplace listing.

    Lifecycle:
        1. Created as a draft (is_draft=True) unless explicitly published
        2. Edited: a title change regenerates the slug, a pricing change
           recomputes final_price
        3. Published / unpublished through the publish toggle
        4. Soft-deleted: deleted_at is set; the row stays for history but is
           invisible to every read

    Owns its ServiceOffering and Media rows. Those are only removed by the
    database cascade on a hard delete; soft delete leaves them in place.
    """

    __tablename__ = "specialists"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    slug: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Pricing ───────────────────────────────────────────────────────────
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    platform_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    final_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)

    is_draft: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    # ── Verification & Ratings ────────────────────────────────────────────
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(
            VerificationStatus,
            name="verification_status",
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=VerificationStatus.PENDING,
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    average_rating: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True, default=Decimal("0")
    )
    total_number_of_ratings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchases_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    # ── Relationships ─────────────────────────────────────────────────────
    # Always loaded explicitly (selectinload) by the service; lazy loading is
    # not possible on an AsyncSession.
    service_offerings: Mapped[List["ServiceOffering"]] = relationship(
        back_populates="specialist",
        passive_deletes=True,
        order_by="ServiceOffering.created_at",
    )
    media: Mapped[List["Media"]] = relationship(
        back_populates="specialist",
        passive_deletes=True,
        order_by="Media.display_order",
    )

    __table_args__ = (
        Index(
            "uq_specialists_slug_active",
            "slug",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Specialist(id={self.id}, slug='{self.slug}', is_draft={self.is_draft})>"


# Declared after the class so it can reference the mapped attribute
Index("idx_specialists_created_at", Specialist.created_at.desc())
