"""
Album, membership and permission override database models.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.permissions import AlbumRole

from .base import Base, TimestampMixin


class Album(Base, TimestampMixin):
    """Photo album. Owns its memberships, overrides and invitations."""

    __tablename__ = "albums"

    # Primary key
    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    owner_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Basic info
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Public sharing: public_token is set if and only if is_public
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    public_token: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, nullable=True
    )

    # Soft delete
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "(is_public AND public_token IS NOT NULL) OR (NOT is_public AND public_token IS NULL)",
            name="ck_albums_public_token_matches_flag",
        ),
    )

    def __repr__(self) -> str:
        return f"<Album(id={self.id}, name={self.name}, owner_id={self.owner_id})>"

    @property
    def is_active(self) -> bool:
        """Check if album is active (not soft-deleted)."""
        return self.deleted_at is None


class AlbumMember(Base, TimestampMixin):
    """Album membership (junction table between users and albums)."""

    __tablename__ = "album_members"

    # Primary key
    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Foreign keys
    album_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("albums.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Role in album
    role: Mapped[str] = mapped_column(
        String(50), default=AlbumRole.VIEWER.value, nullable=False
    )

    # Audit
    added_by_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    role_changed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Overrides are always needed together with the member in permission checks
    permission_overrides: Mapped[list["AlbumPermissionOverride"]] = relationship(
        "AlbumPermissionOverride",
        back_populates="member",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("album_id", "user_id", name="uq_album_members_album_user"),
        # Exactly one owner membership per album
        Index(
            "uq_album_members_single_owner",
            "album_id",
            unique=True,
            postgresql_where=text("role = 'owner'"),
            sqlite_where=text("role = 'owner'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<AlbumMember(id={self.id}, album_id={self.album_id}, user_id={self.user_id}, role={self.role})>"

    @property
    def is_owner(self) -> bool:
        """Check if this is the album's owner membership."""
        return self.role == AlbumRole.OWNER.value

    @property
    def overrides_by_action(self) -> dict[str, bool]:
        """Explicit overrides keyed by action name."""
        return {o.action: o.granted for o in self.permission_overrides}


class AlbumPermissionOverride(Base, TimestampMixin):
    """Explicit per-member, per-action grant or deny."""

    __tablename__ = "album_permission_overrides"

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
    album_member_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("album_members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    action: Mapped[str] = mapped_column(String(64), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)

    # Audit
    set_by_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    member: Mapped["AlbumMember"] = relationship(
        "AlbumMember", back_populates="permission_overrides"
    )

    __table_args__ = (
        UniqueConstraint(
            "album_member_id", "action", name="uq_album_permission_overrides_member_action"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<AlbumPermissionOverride(member={self.album_member_id}, "
            f"action={self.action}, granted={self.granted})>"
        )
