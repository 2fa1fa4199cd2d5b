"""
Album invitation database model.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from core.permissions import AlbumRole

from .base import Base, TimestampMixin, as_utc, utcnow


class InvitationStatus(str, Enum):
    """Album invitation status enumeration. Everything but PENDING is terminal."""

    PENDING = "pending"  # Waiting for acceptance (multi-use tokens stay here between uses)
    ACCEPTED = "accepted"  # All uses consumed
    DECLINED = "declined"  # Invitee declined
    EXPIRED = "expired"  # Past expires_at (flipped lazily on read or by the sweep)
    REVOKED = "revoked"  # Cancelled by an admin or superseded by a newer invitation


TERMINAL_STATUSES = frozenset(
    {
        InvitationStatus.ACCEPTED.value,
        InvitationStatus.DECLINED.value,
        InvitationStatus.EXPIRED.value,
        InvitationStatus.REVOKED.value,
    }
)


class AlbumInvitation(Base, TimestampMixin):
    """Hashed-token invitation that produces an album membership on acceptance."""

    __tablename__ = "album_invitations"

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
    # SET NULL (not CASCADE) so deleting the inviter preserves the audit trail
    invited_by_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Null = open invitation (anyone holding the link can accept)
    invited_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True, index=True)
    invited_role: Mapped[str] = mapped_column(
        String(50), default=AlbumRole.VIEWER.value, nullable=False
    )

    # SHA-256 hex of the raw token; the raw token is never stored
    token_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    # Status tracking
    status: Mapped[str] = mapped_column(
        String(50), default=InvitationStatus.PENDING.value, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: utcnow() + timedelta(days=7),
        nullable=False,
    )

    # Usage accounting; max_uses NULL means unlimited
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    use_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Lifecycle timestamps
    accepted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    declined_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    revoked_by_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_album_invitations_status", "status"),
        Index("ix_album_invitations_expires_at", "expires_at"),
        Index("ix_album_invitations_album_email_status", "album_id", "invited_email", "status"),
        CheckConstraint(
            "max_uses IS NULL OR use_count <= max_uses",
            name="ck_album_invitations_use_count",
        ),
        CheckConstraint(
            "invited_role <> 'owner'",
            name="ck_album_invitations_not_owner",
        ),
    )

    def __repr__(self) -> str:
        return f"<AlbumInvitation(id={self.id}, album_id={self.album_id}, status={self.status})>"

    @property
    def is_pending(self) -> bool:
        """Check if invitation is pending."""
        return self.status == InvitationStatus.PENDING.value

    @property
    def is_past_expiry(self) -> bool:
        """Check the clock only, regardless of stored status."""
        return utcnow() >= as_utc(self.expires_at)

    @property
    def is_exhausted(self) -> bool:
        """Check if every allowed use has been consumed."""
        return self.max_uses is not None and self.use_count >= self.max_uses

    def can_accept(self) -> bool:
        """Check if invitation can be accepted."""
        return self.is_pending and not self.is_past_expiry and not self.is_exhausted
