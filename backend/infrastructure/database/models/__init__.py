"""
SQLAlchemy database models.
"""

from .activity import ActivityType, AlbumActivityLog
from .album import Album, AlbumMember, AlbumPermissionOverride
from .base import Base, TimestampMixin
from .invitation import TERMINAL_STATUSES, AlbumInvitation, InvitationStatus
from .photo import Photo, PhotoVisibilityGrant, PhotoVisibilityType
from .user import User, UserRole, UserStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "UserRole",
    "UserStatus",
    "Album",
    "AlbumMember",
    "AlbumPermissionOverride",
    "Photo",
    "PhotoVisibilityGrant",
    "PhotoVisibilityType",
    "AlbumInvitation",
    "InvitationStatus",
    "TERMINAL_STATUSES",
    "AlbumActivityLog",
    "ActivityType",
]
