"""
Album membership and permission override management.

Rank rules for adding members and changing roles go through the shared
role-change guard in ``core.permissions``; allow/deny decisions go through
AlbumPermissionService.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictError, ForbiddenError, NotFoundError
from core.permissions import (
    ROLE_PERMISSIONS,
    AlbumAction,
    AlbumRole,
    assert_role_change,
    effective_actions,
    has_minimum_role,
    parse_action,
    parse_role,
)
from infrastructure.database.models import (
    ActivityType,
    AlbumMember,
    AlbumPermissionOverride,
    User,
    UserStatus,
)
from infrastructure.database.models.base import utcnow
from services.activity_log import log_activity
from services.album_permissions import AlbumPermissionService, requester_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectivePermissions:
    """What a member can do, and why."""

    member_id: str
    user_id: str
    role: str
    base_actions: frozenset[str]
    overrides: tuple[dict, ...]
    effective_actions: frozenset[str]


class AlbumMemberService:
    """Manages album members and their permission overrides."""

    def __init__(self, db: AsyncSession, permissions: Optional[AlbumPermissionService] = None):
        self.db = db
        self.permissions = permissions or AlbumPermissionService(db)

    async def _get_member(self, album_id: str, user_id: str) -> AlbumMember:
        member = await self.permissions.get_membership(album_id, user_id)
        if member is None:
            raise NotFoundError("Member")
        return member

    # ========================================================================
    # Members
    # ========================================================================

    async def list_members(
        self,
        album_id: str,
        subject_id: Optional[str],
        system_role: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[tuple[AlbumMember, User]], int]:
        """Members (oldest first) with their user rows, plus the total count."""
        await self.permissions.assert_permission(
            album_id, subject_id, AlbumAction.ALBUM_VIEW, system_role
        )

        total = await self.db.scalar(
            select(func.count()).select_from(AlbumMember).where(AlbumMember.album_id == album_id)
        )
        result = await self.db.execute(
            select(AlbumMember, User)
            .join(User, User.id == AlbumMember.user_id)
            .where(AlbumMember.album_id == album_id)
            .order_by(AlbumMember.created_at.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return [(row[0], row[1]) for row in result.all()], total or 0

    async def search_candidate_users(
        self,
        album_id: str,
        query: str,
        requester_id: str,
        system_role: Optional[str] = None,
        limit: int = 10,
    ) -> list[User]:
        """Active users matching ``query`` by e-mail or name who are not members yet."""
        await self.permissions.assert_permission(
            album_id, requester_id, AlbumAction.MEMBER_ADD, system_role
        )

        pattern = f"%{query.strip()}%"
        existing = select(AlbumMember.user_id).where(AlbumMember.album_id == album_id)
        result = await self.db.execute(
            select(User)
            .where(
                User.status == UserStatus.ACTIVE.value,
                or_(User.email.ilike(pattern), User.name.ilike(pattern)),
                User.id.not_in(existing),
            )
            .order_by(User.name.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def add_member(
        self,
        album_id: str,
        target_user_id: str,
        role: str,
        requester_id: str,
        system_role: Optional[str] = None,
    ) -> AlbumMember:
        """
        Add a user to an album directly, without an invitation.

        Raises:
            ForbiddenError: No member:add permission, or the role is owner or
                not strictly below the requester's rank
            NotFoundError: Target user does not exist
            ConflictError: Target user is already a member
        """
        decision = await self.permissions.assert_permission(
            album_id, requester_id, AlbumAction.MEMBER_ADD, system_role
        )
        new_role = parse_role(role)

        # A fresh member starts from the lowest rank
        assert_role_change(decision.acting_role, AlbumRole.VIEWER.value, new_role.value)

        target_user = await self.db.get(User, target_user_id)
        if target_user is None:
            raise NotFoundError("User")

        if await self.permissions.get_membership(album_id, target_user_id) is not None:
            raise ConflictError("User is already a member of this album")

        member = AlbumMember(
            id=str(uuid4()),
            album_id=album_id,
            user_id=target_user_id,
            role=new_role.value,
            added_by_id=requester_id,
        )
        self.db.add(member)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("User is already a member of this album") from None

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=requester_id,
            activity_type=ActivityType.MEMBER_ADDED,
            target_type="user",
            target_id=target_user_id,
            details={"role": new_role.value},
        )
        logger.info(
            "Member added as %s",
            new_role.value,
            extra={"album_id": album_id, "user_id": target_user_id},
        )
        return member

    async def remove_member(
        self,
        album_id: str,
        target_user_id: str,
        requester_id: str,
        system_role: Optional[str] = None,
    ) -> None:
        """
        Remove a member. Users may always remove themselves; removing anyone
        else needs member:remove and a strictly higher rank. The owner
        membership is never removed.
        """
        # Album must exist; leaving a public album needs no extra permission
        await self.permissions.resolve(album_id, requester_id, AlbumAction.ALBUM_VIEW, system_role)

        target = await self._get_member(album_id, target_user_id)
        if target.is_owner:
            raise ForbiddenError("Album owner cannot be removed. Transfer ownership first.")

        is_self = requester_id == target_user_id
        if not is_self:
            decision = await self.permissions.assert_permission(
                album_id, requester_id, AlbumAction.MEMBER_REMOVE, system_role
            )
            if has_minimum_role(target.role, decision.acting_role):
                raise ForbiddenError("Cannot remove a member with equal or higher permissions")

        removed_role = target.role
        await self.db.delete(target)
        await self.db.commit()

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=requester_id,
            activity_type=ActivityType.MEMBER_REMOVED,
            target_type="user",
            target_id=target_user_id,
            details={"removed_role": removed_role, "self_removal": is_self},
        )
        logger.info("Member removed", extra={"album_id": album_id, "user_id": target_user_id})

    async def change_member_role(
        self,
        album_id: str,
        target_user_id: str,
        new_role: str,
        requester_id: str,
        system_role: Optional[str] = None,
    ) -> AlbumMember:
        """Change a member's role within the requester's rank."""
        context = await self.permissions.resolve_access(album_id, requester_id, system_role)
        if not context.can(AlbumAction.MEMBER_CHANGE_ROLE):
            raise ForbiddenError(
                f"Not allowed to {AlbumAction.MEMBER_CHANGE_ROLE.value}",
                details={"action": AlbumAction.MEMBER_CHANGE_ROLE.value},
            )
        parsed = parse_role(new_role)

        target = await self._get_member(album_id, target_user_id)
        if target.is_owner:
            raise ForbiddenError("Cannot change owner role. Use ownership transfer.")

        assert_role_change(requester_role(context), target.role, parsed.value)

        previous_role = target.role
        target.role = parsed.value
        target.role_changed_at = utcnow()
        await self.db.commit()

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=requester_id,
            activity_type=ActivityType.MEMBER_ROLE_CHANGED,
            target_type="user",
            target_id=target_user_id,
            details={"previous_role": previous_role, "new_role": parsed.value},
        )
        logger.info(
            "Member role changed from %s to %s",
            previous_role,
            parsed.value,
            extra={"album_id": album_id, "user_id": target_user_id},
        )
        return target

    # ========================================================================
    # Overrides
    # ========================================================================

    async def set_permission_override(
        self,
        album_id: str,
        target_user_id: str,
        action: str,
        granted: bool,
        requester_id: str,
        system_role: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AlbumPermissionOverride:
        """
        Grant or deny one action for a member, regardless of role. Upserts.

        Raises:
            ForbiddenError: No album:manage_settings, or the target is the owner
            NotFoundError: Target is not a member
            ValidationError: Unknown action name
        """
        await self.permissions.assert_permission(
            album_id, requester_id, AlbumAction.ALBUM_MANAGE_SETTINGS, system_role
        )

        target = await self._get_member(album_id, target_user_id)
        if target.is_owner:
            raise ForbiddenError("Cannot set permission overrides for the album owner")

        parsed = parse_action(action)

        override = next(
            (o for o in target.permission_overrides if o.action == parsed.value), None
        )
        previous = override.granted if override is not None else None
        if override is None:
            override = AlbumPermissionOverride(
                id=str(uuid4()),
                album_id=album_id,
                action=parsed.value,
                granted=granted,
                set_by_id=requester_id,
                reason=reason,
            )
            target.permission_overrides.append(override)
        else:
            override.granted = granted
            override.set_by_id = requester_id
            override.reason = reason

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Permission override was changed concurrently") from None

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=requester_id,
            activity_type=ActivityType.OVERRIDE_SET,
            target_type="member",
            target_id=target.id,
            details={
                "action": parsed.value,
                "granted": granted,
                "previous": previous,
                "reason": reason,
            },
        )
        logger.info(
            "Permission override set (granted=%s)",
            granted,
            extra={"album_id": album_id, "user_id": target_user_id, "action": parsed.value},
        )
        return override

    async def remove_permission_override(
        self,
        album_id: str,
        target_user_id: str,
        action: str,
        requester_id: str,
        system_role: Optional[str] = None,
    ) -> None:
        """Drop an override so the member falls back to the role table."""
        await self.permissions.assert_permission(
            album_id, requester_id, AlbumAction.ALBUM_MANAGE_SETTINGS, system_role
        )
        parsed = parse_action(action)

        target = await self._get_member(album_id, target_user_id)
        override = next(
            (o for o in target.permission_overrides if o.action == parsed.value), None
        )
        if override is None:
            raise NotFoundError("Permission override")

        target.permission_overrides.remove(override)
        await self.db.commit()

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=requester_id,
            activity_type=ActivityType.OVERRIDE_REMOVED,
            target_type="member",
            target_id=target.id,
            details={"action": parsed.value, "granted": override.granted},
        )
        logger.info(
            "Permission override removed",
            extra={"album_id": album_id, "user_id": target_user_id, "action": parsed.value},
        )

    async def get_effective_permissions(
        self,
        album_id: str,
        target_user_id: str,
        requester_id: Optional[str],
        system_role: Optional[str] = None,
    ) -> EffectivePermissions:
        """Base role actions, overrides and the resulting effective set for a member."""
        await self.permissions.assert_permission(
            album_id, requester_id, AlbumAction.ALBUM_VIEW, system_role
        )

        member = await self._get_member(album_id, target_user_id)
        base = ROLE_PERMISSIONS.get(AlbumRole(member.role), frozenset())
        effective = effective_actions(member.role, member.overrides_by_action)

        return EffectivePermissions(
            member_id=member.id,
            user_id=target_user_id,
            role=member.role,
            base_actions=frozenset(a.value for a in base),
            overrides=tuple(
                {"action": o.action, "granted": o.granted, "reason": o.reason}
                for o in member.permission_overrides
            ),
            effective_actions=frozenset(a.value for a in effective),
        )
