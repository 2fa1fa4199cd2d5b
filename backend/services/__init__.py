"""
Service layer for business logic.
"""

from services.album_invitations import (
    AlbumInvitationService,
    CreatedInvitation,
    InvitationPreview,
    cleanup_old_invitations,
    expire_old_invitations,
)
from services.album_members import AlbumMemberService, EffectivePermissions
from services.album_permissions import (
    AlbumAccessContext,
    AlbumPermissionService,
    PermissionDecision,
    requester_role,
)
from services.albums import AlbumService
from services.photo_visibility import PhotoVisibilityService, VisibilityDecision

__all__ = [
    "AlbumAccessContext",
    "AlbumInvitationService",
    "AlbumMemberService",
    "AlbumPermissionService",
    "AlbumService",
    "CreatedInvitation",
    "EffectivePermissions",
    "InvitationPreview",
    "PermissionDecision",
    "PhotoVisibilityService",
    "VisibilityDecision",
    "cleanup_old_invitations",
    "expire_old_invitations",
    "requester_role",
]
