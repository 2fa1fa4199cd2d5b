"""
Album activity (audit) log model.
"""

from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, ForeignKey, Index, String, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class ActivityType(str, Enum):
    """Audit event types for state-changing album operations."""

    # Album
    ALBUM_CREATED = "album.created"
    ALBUM_UPDATED = "album.updated"
    ALBUM_DELETED = "album.deleted"
    ALBUM_RESTORED = "album.restored"
    ALBUM_VISIBILITY_CHANGED = "album.visibility_changed"

    # Membership
    MEMBER_ADDED = "member.added"
    MEMBER_REMOVED = "member.removed"
    MEMBER_ROLE_CHANGED = "member.role_changed"

    # Overrides
    OVERRIDE_SET = "override.set"
    OVERRIDE_REMOVED = "override.removed"

    # Photos
    PHOTO_VISIBILITY_CHANGED = "photo.visibility_changed"

    # Invitations
    INVITATION_CREATED = "invitation.created"
    INVITATION_ACCEPTED = "invitation.accepted"
    INVITATION_DECLINED = "invitation.declined"
    INVITATION_REVOKED = "invitation.revoked"


class AlbumActivityLog(Base, TimestampMixin):
    """Immutable audit record for an album domain event."""

    __tablename__ = "album_activity_logs"

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
    actor_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Target resource
    target_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    target_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Additional context
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """
    Structure depends on type, e.g.
    {
        "previous_role": "viewer",
        "new_role": "contributor",
        "via": "invitation"
    }
    """

    __table_args__ = (
        Index("ix_album_activity_album_created", "album_id", "created_at"),
        Index("ix_album_activity_actor", "actor_id"),
    )


@event.listens_for(AlbumActivityLog, "before_update")
def _reject_activity_update(mapper, connection, target) -> None:
    raise ValueError("Album activity log entries are immutable")
