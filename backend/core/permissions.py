"""
Album role table and role-change guard.

This module is the single source of the role -> actions map and of the role
rank order. The permission resolver, the access context builder, membership
management and invitations all read from here; nothing else may encode
which role can do what.

Role Permission Map:

    viewer      : album:view
    contributor : viewer + photo:upload, photo:view_restricted, comment:create
    admin       : contributor + album:edit, album:manage_settings, photo:delete,
                  comment:delete, member:add, member:remove,
                  member:change_role, invitation:create
    owner       : admin + album:delete
"""

from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Optional

from .exceptions import ForbiddenError, ValidationError


class AlbumRole(StrEnum):
    """Album member role enumeration."""

    VIEWER = "viewer"  # View photos (subject to photo visibility)
    CONTRIBUTOR = "contributor"  # Upload photos, comment
    ADMIN = "admin"  # Manage members, edit album settings
    OWNER = "owner"  # Full control, can delete album


class AlbumAction(StrEnum):
    """Actions that can be checked against an album."""

    ALBUM_VIEW = "album:view"
    ALBUM_EDIT = "album:edit"
    ALBUM_DELETE = "album:delete"
    ALBUM_MANAGE_SETTINGS = "album:manage_settings"
    MEMBER_ADD = "member:add"
    MEMBER_REMOVE = "member:remove"
    MEMBER_CHANGE_ROLE = "member:change_role"
    PHOTO_UPLOAD = "photo:upload"
    PHOTO_DELETE = "photo:delete"
    PHOTO_VIEW_RESTRICTED = "photo:view_restricted"
    COMMENT_CREATE = "comment:create"
    COMMENT_DELETE = "comment:delete"
    INVITATION_CREATE = "invitation:create"


# Higher number = more permissions
ROLE_RANK: Mapping[AlbumRole, int] = {
    AlbumRole.VIEWER: 1,
    AlbumRole.CONTRIBUTOR: 2,
    AlbumRole.ADMIN: 3,
    AlbumRole.OWNER: 4,
}

_VIEWER_ACTIONS = frozenset({AlbumAction.ALBUM_VIEW})

_CONTRIBUTOR_ACTIONS = _VIEWER_ACTIONS | {
    AlbumAction.PHOTO_UPLOAD,
    AlbumAction.PHOTO_VIEW_RESTRICTED,
    AlbumAction.COMMENT_CREATE,
}

_ADMIN_ACTIONS = _CONTRIBUTOR_ACTIONS | {
    AlbumAction.ALBUM_EDIT,
    AlbumAction.ALBUM_MANAGE_SETTINGS,
    AlbumAction.PHOTO_DELETE,
    AlbumAction.COMMENT_DELETE,
    AlbumAction.MEMBER_ADD,
    AlbumAction.MEMBER_REMOVE,
    AlbumAction.MEMBER_CHANGE_ROLE,
    AlbumAction.INVITATION_CREATE,
}

ROLE_PERMISSIONS: Mapping[AlbumRole, frozenset[AlbumAction]] = {
    AlbumRole.VIEWER: _VIEWER_ACTIONS,
    AlbumRole.CONTRIBUTOR: frozenset(_CONTRIBUTOR_ACTIONS),
    AlbumRole.ADMIN: frozenset(_ADMIN_ACTIONS),
    AlbumRole.OWNER: frozenset(_ADMIN_ACTIONS | {AlbumAction.ALBUM_DELETE}),
}

ALL_ACTIONS: frozenset[AlbumAction] = frozenset(AlbumAction)

DEFAULT_SYSTEM_OPERATOR_ROLES: frozenset[str] = frozenset({"admin", "super_admin"})


def parse_action(action: str) -> AlbumAction:
    """Coerce an action name, raising ValidationError for unknown names."""
    try:
        return AlbumAction(action)
    except ValueError:
        raise ValidationError(f'Unknown permission action: "{action}"') from None


def parse_role(role: str) -> AlbumRole:
    """Coerce a role name, raising ValidationError for unknown names."""
    try:
        return AlbumRole(role)
    except ValueError:
        raise ValidationError(f'Unknown album role: "{role}"') from None


def role_rank(role: Optional[str]) -> int:
    """Rank of a role; unknown or missing roles rank below viewer."""
    if role is None:
        return 0
    try:
        return ROLE_RANK[AlbumRole(role)]
    except ValueError:
        return 0


def has_minimum_role(role: Optional[str], required: str) -> bool:
    """Check if role has at least the rank of the required role."""
    return role_rank(role) >= role_rank(required)


def role_allows(role: Optional[str], action: str) -> bool:
    """Check if a role's static permission set contains the action."""
    if role is None:
        return False
    try:
        return AlbumAction(action) in ROLE_PERMISSIONS.get(AlbumRole(role), frozenset())
    except ValueError:
        return False


def effective_actions(
    role: Optional[str],
    overrides: Optional[Mapping[str, bool]] = None,
) -> frozenset[AlbumAction]:
    """
    Compute the actions a member may perform.

    Starts from the role's static set and applies each explicit override:
    ``granted=True`` adds the action, ``granted=False`` removes it. Overrides
    win over the role in either direction.
    """
    actions: set[AlbumAction] = set()
    if role is not None:
        try:
            actions.update(ROLE_PERMISSIONS.get(AlbumRole(role), frozenset()))
        except ValueError:
            pass

    for action, granted in (overrides or {}).items():
        try:
            parsed = AlbumAction(action)
        except ValueError:
            continue
        if granted:
            actions.add(parsed)
        else:
            actions.discard(parsed)

    return frozenset(actions)


def is_system_operator(
    system_role: Optional[str],
    operator_roles: Iterable[str] = DEFAULT_SYSTEM_OPERATOR_ROLES,
) -> bool:
    """Check if a platform role bypasses album permissions."""
    return system_role is not None and system_role in set(operator_roles)


def assert_role_change(requester_role: str, target_role: str, new_role: str) -> None:
    """
    Reject a role assignment that would escalate privileges.

    Applied identically by member-add (target = viewer), role-change and
    invitation creation (the inviter's rank gates the offered role).

    Raises:
        ForbiddenError: new role is owner, target ranks equal or higher than
            the requester, or new role ranks equal or higher than the requester.
    """
    if new_role == AlbumRole.OWNER:
        raise ForbiddenError("Ownership cannot be assigned via role change. Use ownership transfer.")

    requester_rank = role_rank(requester_role)

    if role_rank(target_role) >= requester_rank:
        raise ForbiddenError("Cannot change role of a member with equal or higher permissions")

    if role_rank(new_role) >= requester_rank:
        raise ForbiddenError("Cannot assign a role equal to or higher than your own")
