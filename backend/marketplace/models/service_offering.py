"""
Specialist Marketplace Backend — ServiceOffering SQLAlchemy Model
==================================================================

What:  A named sub-service belonging to exactly one Specialist.
How:   Never patched in place. An update that carries an offerings array
       deletes every offering of the listing and inserts the new set.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base, utcnow

if TYPE_CHECKING:
    from marketplace.models.specialist import Specialist


class ServiceOffering(Base):
    __tablename__ = "service_offerings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    specialist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("specialists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default="")

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

    # Lookup-only back-reference
    specialist: Mapped["Specialist"] = relationship(back_populates="service_offerings")

    def __repr__(self) -> str:
        return f"<ServiceOffering(id={self.id}, name='{self.name}')>"
