"""
Album invitation lifecycle.

    create -> share -> preview -> accept | decline
    create -> revoke (album admins, pending only)

Tokens are bearer capabilities: only their SHA-256 hash is stored and the
raw token is returned exactly once, from ``create_invitation``.

Expiry is applied lazily: whenever a pending invitation past its
``expires_at`` is read, its status is flipped to expired and committed
before Gone is raised. ``expire_old_invitations`` sweeps the rest.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    ValidationError,
)
from core.permissions import AlbumAction, AlbumRole, assert_role_change, parse_role
from core.security.tokens import generate_invitation_token, hash_token
from infrastructure.config.settings import settings
from infrastructure.database.models import (
    ActivityType,
    Album,
    AlbumInvitation,
    AlbumMember,
    InvitationStatus,
    TERMINAL_STATUSES,
    User,
)
from infrastructure.database.models.base import utcnow
from services.activity_log import log_activity
from services.album_permissions import AlbumPermissionService
from services.notifications import dispatch_invitation_email

logger = logging.getLogger(__name__)

_GONE_MESSAGES = {
    InvitationStatus.ACCEPTED.value: "This invitation has already been used",
    InvitationStatus.DECLINED.value: "This invitation was declined",
    InvitationStatus.REVOKED.value: "This invitation has been revoked",
    InvitationStatus.EXPIRED.value: "This invitation has expired",
}


@dataclass(frozen=True)
class CreatedInvitation:
    """A new invitation plus its raw token. The only place the token is exposed."""

    invitation: AlbumInvitation
    token: str


@dataclass(frozen=True)
class InvitationPreview:
    invitation: AlbumInvitation
    album: Album
    invited_by: Optional[User]


class AlbumInvitationService:
    """Creates, resolves and retires album invitations."""

    def __init__(self, db: AsyncSession, permissions: Optional[AlbumPermissionService] = None):
        self.db = db
        self.permissions = permissions or AlbumPermissionService(db)

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _get_by_token(self, raw_token: str) -> AlbumInvitation:
        result = await self.db.execute(
            select(AlbumInvitation).where(AlbumInvitation.token_hash == hash_token(raw_token))
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise NotFoundError("Invitation")
        return invitation

    async def _expire_if_stale(self, invitation: AlbumInvitation) -> None:
        """Persist the expired status of a pending invitation past its expiry, then raise Gone."""
        if invitation.is_pending and invitation.is_past_expiry:
            invitation.status = InvitationStatus.EXPIRED.value
            await self.db.commit()
            logger.info(
                "Invitation expired on read",
                extra={"invitation_id": invitation.id, "album_id": invitation.album_id},
            )
            raise GoneError(_GONE_MESSAGES[InvitationStatus.EXPIRED.value])

    def _assert_usable(self, invitation: AlbumInvitation) -> None:
        if invitation.can_accept():
            return
        if invitation.status in TERMINAL_STATUSES:
            raise GoneError(_GONE_MESSAGES[invitation.status])
        if invitation.is_exhausted:
            raise GoneError(_GONE_MESSAGES[InvitationStatus.ACCEPTED.value])
        raise GoneError(_GONE_MESSAGES[InvitationStatus.EXPIRED.value])

    async def _get_live_album(self, album_id: str) -> Album:
        album = await self.db.get(Album, album_id)
        if album is None or not album.is_active:
            raise GoneError("The album for this invitation is no longer available")
        return album

    # ========================================================================
    # Create
    # ========================================================================

    async def create_invitation(
        self,
        album_id: str,
        requester_id: str,
        system_role: Optional[str] = None,
        invited_role: str = AlbumRole.VIEWER.value,
        invited_email: Optional[str] = None,
        max_uses: Optional[int] = 1,
        expires_in: Optional[timedelta] = None,
        note: Optional[str] = None,
    ) -> CreatedInvitation:
        """
        Create a shareable invitation.

        Any other pending invitation for the same album and e-mail is revoked
        in the same commit, so an e-mail has at most one live invitation per
        album. The offered role must rank strictly below the inviter.

        Args:
            album_id: Album to invite into
            requester_id: Inviting user
            system_role: Inviter's platform role
            invited_role: Role granted on acceptance (never owner)
            invited_email: Target e-mail; None creates an open link
            max_uses: Accepts allowed (None = unlimited)
            expires_in: Lifetime (default from settings)
            note: Personal message shown to the invitee

        Raises:
            ForbiddenError: No invitation:create, owner role, or role too high
            ValidationError: Unknown role, bad max_uses or lifetime
            ConflictError: E-mail already belongs to a member
        """
        decision = await self.permissions.assert_permission(
            album_id, requester_id, AlbumAction.INVITATION_CREATE, system_role
        )
        album = decision.album

        role = parse_role(invited_role)
        if role == AlbumRole.OWNER:
            raise ForbiddenError("Cannot invite a user as album owner")
        assert_role_change(decision.acting_role, AlbumRole.VIEWER.value, role.value)

        if max_uses is not None and not 1 <= max_uses <= settings.invitation_max_uses_limit:
            raise ValidationError(
                f"max_uses must be between 1 and {settings.invitation_max_uses_limit}"
            )

        lifetime = (
            expires_in if expires_in is not None else timedelta(days=settings.invitation_expiry_days)
        )
        if lifetime.total_seconds() <= 0:
            raise ValidationError("Invitation lifetime must be positive")

        email = invited_email.strip().lower() if invited_email else None
        now = utcnow()

        if email:
            existing_member = await self.db.execute(
                select(AlbumMember.id)
                .join(User, User.id == AlbumMember.user_id)
                .where(AlbumMember.album_id == album_id, func.lower(User.email) == email)
            )
            if existing_member.first() is not None:
                raise ConflictError("This user is already a member of the album")

            # Supersede older pending invitations for this e-mail
            await self.db.execute(
                update(AlbumInvitation)
                .where(
                    AlbumInvitation.album_id == album_id,
                    AlbumInvitation.invited_email == email,
                    AlbumInvitation.status == InvitationStatus.PENDING.value,
                )
                .values(
                    status=InvitationStatus.REVOKED.value,
                    revoked_at=now,
                    revoked_by_id=requester_id,
                )
            )

        token = generate_invitation_token()
        invitation = AlbumInvitation(
            id=str(uuid4()),
            album_id=album_id,
            invited_by_id=requester_id,
            invited_email=email,
            invited_role=role.value,
            token_hash=token.hashed,
            status=InvitationStatus.PENDING.value,
            expires_at=now + lifetime,
            max_uses=max_uses,
            use_count=0,
            note=note,
        )
        self.db.add(invitation)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Invitation could not be created, please retry") from None

        if email:
            inviter = await self.db.get(User, requester_id)
            dispatch_invitation_email(
                to_email=email,
                inviter_name=inviter.name if inviter else "Someone",
                album_name=album.name,
                role=role.value,
                raw_token=token.raw,
                expires_in_days=max(1, lifetime.days),
                note=note,
            )

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=requester_id,
            activity_type=ActivityType.INVITATION_CREATED,
            target_type="invitation",
            target_id=invitation.id,
            details={"invited_role": role.value, "invited_email": email, "max_uses": max_uses},
        )
        logger.info(
            "Invitation created for role %s",
            role.value,
            extra={"album_id": album_id, "invitation_id": invitation.id, "user_id": requester_id},
        )
        return CreatedInvitation(invitation=invitation, token=token.raw)

    # ========================================================================
    # Token holder operations
    # ========================================================================

    async def preview_invitation(self, raw_token: str) -> InvitationPreview:
        """
        Invitation details for the token holder. No session required.

        Raises:
            NotFoundError: Unknown token
            GoneError: Expired (persisted), revoked, declined or used up
        """
        invitation = await self._get_by_token(raw_token)
        await self._expire_if_stale(invitation)
        self._assert_usable(invitation)

        album = await self._get_live_album(invitation.album_id)
        invited_by = (
            await self.db.get(User, invitation.invited_by_id) if invitation.invited_by_id else None
        )
        return InvitationPreview(invitation=invitation, album=album, invited_by=invited_by)

    async def accept_invitation(self, raw_token: str, subject_id: Optional[str]) -> AlbumMember:
        """
        Join the album through an invitation.

        Membership creation and the use-count increment are one commit. The
        increment is conditional on the invitation still being pending with
        uses left, so concurrent acceptances of a single-use token cannot
        both succeed.

        Raises:
            ForbiddenError: Anonymous subject
            NotFoundError: Unknown token
            GoneError: Expired (persisted), revoked, declined or used up
            ConflictError: Already a member, or lost a race for the last use
        """
        if subject_id is None:
            raise ForbiddenError("Authentication required")

        invitation = await self._get_by_token(raw_token)
        await self._expire_if_stale(invitation)
        self._assert_usable(invitation)
        await self._get_live_album(invitation.album_id)

        if await self.permissions.get_membership(invitation.album_id, subject_id) is not None:
            raise ConflictError("You are already a member of this album")

        member = AlbumMember(
            id=str(uuid4()),
            album_id=invitation.album_id,
            user_id=subject_id,
            role=invitation.invited_role,
            added_by_id=invitation.invited_by_id,
        )
        self.db.add(member)
        try:
            await self.db.flush()

            claimed = await self.db.execute(
                update(AlbumInvitation)
                .where(
                    AlbumInvitation.id == invitation.id,
                    AlbumInvitation.status == InvitationStatus.PENDING.value,
                    or_(
                        AlbumInvitation.max_uses.is_(None),
                        AlbumInvitation.use_count < AlbumInvitation.max_uses,
                    ),
                )
                .values(use_count=AlbumInvitation.use_count + 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await self.db.rollback()
                raise ConflictError("This invitation was used by someone else, please retry")

            await self.db.refresh(invitation)
            if invitation.is_exhausted:
                invitation.status = InvitationStatus.ACCEPTED.value
                invitation.accepted_at = utcnow()

            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("You are already a member of this album") from None

        await log_activity(
            self.db,
            album_id=member.album_id,
            actor_id=subject_id,
            activity_type=ActivityType.MEMBER_ADDED,
            target_type="user",
            target_id=subject_id,
            details={
                "role": member.role,
                "via": "invitation",
                "invitation_id": invitation.id,
            },
        )
        await log_activity(
            self.db,
            album_id=member.album_id,
            actor_id=subject_id,
            activity_type=ActivityType.INVITATION_ACCEPTED,
            target_type="invitation",
            target_id=invitation.id,
            details={"use_count": invitation.use_count, "max_uses": invitation.max_uses},
        )
        logger.info(
            "Invitation accepted (%s/%s uses)",
            invitation.use_count,
            invitation.max_uses if invitation.max_uses is not None else "unlimited",
            extra={"album_id": member.album_id, "invitation_id": invitation.id, "user_id": subject_id},
        )
        return member

    async def decline_invitation(self, raw_token: str, subject_id: Optional[str]) -> AlbumInvitation:
        """Decline a pending invitation. Terminal regardless of previous uses."""
        invitation = await self._get_by_token(raw_token)
        await self._expire_if_stale(invitation)
        if not invitation.is_pending:
            raise GoneError("This invitation is no longer valid")

        invitation.status = InvitationStatus.DECLINED.value
        invitation.declined_at = utcnow()
        await self.db.commit()

        await log_activity(
            self.db,
            album_id=invitation.album_id,
            actor_id=subject_id,
            activity_type=ActivityType.INVITATION_DECLINED,
            target_type="invitation",
            target_id=invitation.id,
        )
        logger.info(
            "Invitation declined",
            extra={"invitation_id": invitation.id, "user_id": subject_id},
        )
        return invitation

    # ========================================================================
    # Album admin operations
    # ========================================================================

    async def revoke_invitation(
        self,
        album_id: str,
        invitation_id: str,
        requester_id: str,
        system_role: Optional[str] = None,
    ) -> AlbumInvitation:
        """
        Revoke a pending invitation. Irreversible.

        An invitation already past its expiry is recorded as expired, not revoked.

        Raises:
            ForbiddenError: No invitation:create permission
            NotFoundError: No such invitation in this album
            GoneError: Invitation had already expired
            ConflictError: Invitation is not pending
        """
        await self.permissions.assert_permission(
            album_id, requester_id, AlbumAction.INVITATION_CREATE, system_role
        )

        result = await self.db.execute(
            select(AlbumInvitation).where(
                AlbumInvitation.id == invitation_id,
                AlbumInvitation.album_id == album_id,
            )
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise NotFoundError("Invitation")

        await self._expire_if_stale(invitation)
        if not invitation.is_pending:
            raise ConflictError(f'Cannot revoke an invitation with status "{invitation.status}"')

        invitation.status = InvitationStatus.REVOKED.value
        invitation.revoked_at = utcnow()
        invitation.revoked_by_id = requester_id
        await self.db.commit()

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=requester_id,
            activity_type=ActivityType.INVITATION_REVOKED,
            target_type="invitation",
            target_id=invitation.id,
        )
        logger.info(
            "Invitation revoked",
            extra={"album_id": album_id, "invitation_id": invitation.id, "user_id": requester_id},
        )
        return invitation

    async def list_invitations(
        self,
        album_id: str,
        requester_id: str,
        system_role: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[AlbumInvitation], int]:
        """Newest-first invitations of an album, plus the total count."""
        await self.permissions.assert_permission(
            album_id, requester_id, AlbumAction.INVITATION_CREATE, system_role
        )

        filters = [AlbumInvitation.album_id == album_id]
        if status:
            try:
                filters.append(AlbumInvitation.status == InvitationStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown invitation status: {status}") from None

        total = await self.db.scalar(
            select(func.count()).select_from(AlbumInvitation).where(*filters)
        )
        result = await self.db.execute(
            select(AlbumInvitation)
            .where(*filters)
            .order_by(AlbumInvitation.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0


# ============================================================================
# Housekeeping
# ============================================================================


async def expire_old_invitations(db: AsyncSession) -> int:
    """
    Mark pending invitations past their expiry as EXPIRED.

    Lazy expiry already covers every read path; this keeps raw storage tidy
    and is meant to be called periodically.

    Args:
        db: Database session

    Returns:
        Number of invitations marked as expired
    """
    result = await db.execute(
        update(AlbumInvitation)
        .where(
            AlbumInvitation.status == InvitationStatus.PENDING.value,
            AlbumInvitation.expires_at <= utcnow(),
        )
        .values(status=InvitationStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    expired_count = result.rowcount or 0

    if expired_count > 0:
        await db.commit()
        logger.info(f"Marked {expired_count} album invitations as expired")

    return expired_count


async def cleanup_old_invitations(db: AsyncSession, days_old: Optional[int] = None) -> int:
    """
    Delete old terminal invitations.

    Only deletes invitations that reached a terminal status more than N days ago.

    Args:
        db: Database session
        days_old: Retention in days (default: settings.invitation_retention_days)

    Returns:
        Number of invitations deleted
    """
    if days_old is None:
        days_old = settings.invitation_retention_days
    cutoff_date = utcnow() - timedelta(days=days_old)

    result = await db.execute(
        delete(AlbumInvitation)
        .where(
            AlbumInvitation.status.in_(sorted(TERMINAL_STATUSES)),
            AlbumInvitation.updated_at < cutoff_date,
        )
        .execution_options(synchronize_session=False)
    )
    deleted_count = result.rowcount or 0

    if deleted_count > 0:
        await db.commit()
        logger.info(f"Deleted {deleted_count} old album invitations")

    return deleted_count
