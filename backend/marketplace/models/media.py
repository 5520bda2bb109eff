"""
Specialist Marketplace Backend — Media SQLAlchemy Model
========================================================

What:  An uploaded asset (image) attached to one Specialist.

display_order is a positional slot. Replacing slot N deletes only the rows
in slot N before inserting the replacement; other slots are untouched.
file_path holds either the storage provider URL or a local `/uploads/...`
path, depending on which storage backend accepted the file.
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base, utcnow

if TYPE_CHECKING:
    from marketplace.models.specialist import Specialist


class MediaType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"


class Media(Base):
    __tablename__ = "media"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    specialist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("specialists.id", ondelete="CASCADE"),
        nullable=False,
    )

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Null for media registered by URL (type unknown to us)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    media_type: Mapped[MediaType] = mapped_column(
        Enum(
            MediaType,
            name="media_type",
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=MediaType.IMAGE,
    )

    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=utcnow,
    )
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

    specialist: Mapped["Specialist"] = relationship(back_populates="media")

    # Slot replacement filters on (specialist_id, display_order)
    __table_args__ = (
        Index("idx_media_specialist_slot", "specialist_id", "display_order"),
    )

    def __repr__(self) -> str:
        return f"<Media(id={self.id}, slot={self.display_order}, path='{self.file_path}')>"
