"""
Photo and per-photo visibility database models.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class PhotoVisibilityType(StrEnum):
    """Per-photo visibility, layered on top of album permissions."""

    ALBUM_DEFAULT = "album_default"  # Anyone who may view the album
    RESTRICTED = "restricted"  # Owner, uploader and the allowlist only
    HIDDEN = "hidden"  # Owner and uploader only


class Photo(Base, TimestampMixin):
    """Photo metadata. File storage and processing live elsewhere."""

    __tablename__ = "photos"

    # Primary key
    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    album_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("albums.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    uploaded_by_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    filename: Mapped[str] = mapped_column(String(255), nullable=False)

    visibility_type: Mapped[str] = mapped_column(
        String(32),
        default=PhotoVisibilityType.ALBUM_DEFAULT.value,
        nullable=False,
    )

    # Soft delete
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Photo(id={self.id}, album_id={self.album_id}, visibility={self.visibility_type})>"


class PhotoVisibilityGrant(Base, TimestampMixin):
    """Allowlist row: user may view a restricted photo."""

    __tablename__ = "photo_visibility_grants"

    # Primary key
    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    photo_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("photos.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    granted_by_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("photo_id", "user_id", name="uq_photo_visibility_grants_photo_user"),
    )
