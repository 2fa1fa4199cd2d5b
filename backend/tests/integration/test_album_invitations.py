"""
Integration tests for album invitations.

Tests cover invitation workflow:
- Creating invitations (role guard, max uses, superseding)
- Previewing and accepting with single and multi-use tokens
- Lazy expiry on read
- Declining and revoking
- Concurrent acceptance of the last use
- Housekeeping sweeps
"""

from datetime import timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import ConflictError, ForbiddenError, GoneError, NotFoundError, ValidationError
from core.security.tokens import hash_token
from infrastructure.database.models import AlbumInvitation, AlbumMember, InvitationStatus
from infrastructure.database.models.base import utcnow
from services.album_invitations import (
    AlbumInvitationService,
    cleanup_old_invitations,
    expire_old_invitations,
)


async def stored_status(db: AsyncSession, invitation_id: str) -> tuple[str, int]:
    result = await db.execute(
        select(AlbumInvitation.status, AlbumInvitation.use_count).where(
            AlbumInvitation.id == invitation_id
        )
    )
    return tuple(result.one())


async def backdate_expiry(db: AsyncSession, invitation_id: str) -> None:
    await db.execute(
        update(AlbumInvitation)
        .where(AlbumInvitation.id == invitation_id)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db.commit()


class TestCreateInvitation:
    @pytest.mark.asyncio
    async def test_raw_token_is_never_stored(self, db_session: AsyncSession, album, owner):
        created = await AlbumInvitationService(db_session).create_invitation(album.id, owner.id)

        assert len(created.token) == 64
        assert created.invitation.token_hash == hash_token(created.token)
        assert created.invitation.token_hash != created.token
        assert created.invitation.status == "pending"
        assert created.invitation.invited_role == "viewer"

    @pytest.mark.asyncio
    async def test_owner_role_forbidden(self, db_session: AsyncSession, album, owner):
        with pytest.raises(ForbiddenError):
            await AlbumInvitationService(db_session).create_invitation(
                album.id, owner.id, invited_role="owner"
            )

    @pytest.mark.asyncio
    async def test_admin_cannot_invite_admin(self, db_session: AsyncSession, album, album_admin):
        with pytest.raises(ForbiddenError):
            await AlbumInvitationService(db_session).create_invitation(
                album.id, album_admin.id, invited_role="admin"
            )

    @pytest.mark.asyncio
    async def test_admin_invites_contributor(self, db_session: AsyncSession, album, album_admin):
        created = await AlbumInvitationService(db_session).create_invitation(
            album.id, album_admin.id, invited_role="contributor"
        )
        assert created.invitation.invited_role == "contributor"

    @pytest.mark.asyncio
    async def test_contributor_cannot_invite(self, db_session: AsyncSession, album, contributor):
        with pytest.raises(ForbiddenError):
            await AlbumInvitationService(db_session).create_invitation(album.id, contributor.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_uses", [0, -1, 10_000])
    async def test_max_uses_bounds(self, db_session: AsyncSession, album, owner, max_uses):
        with pytest.raises(ValidationError):
            await AlbumInvitationService(db_session).create_invitation(
                album.id, owner.id, max_uses=max_uses
            )

    @pytest.mark.asyncio
    async def test_unlimited_uses(self, db_session: AsyncSession, album, owner, make_user):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id, max_uses=None)
        assert created.invitation.max_uses is None

        for _ in range(2):
            await service.accept_invitation(created.token, (await make_user()).id)

        assert await stored_status(db_session, created.invitation.id) == ("pending", 2)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lifetime", [timedelta(0), timedelta(hours=-1)])
    async def test_non_positive_lifetime_rejected(
        self, db_session: AsyncSession, album, owner, lifetime
    ):
        with pytest.raises(ValidationError):
            await AlbumInvitationService(db_session).create_invitation(
                album.id, owner.id, expires_in=lifetime
            )

    @pytest.mark.asyncio
    async def test_email_of_existing_member_conflict(self, db_session: AsyncSession, album, owner, viewer):
        with pytest.raises(ConflictError):
            await AlbumInvitationService(db_session).create_invitation(
                album.id, owner.id, invited_email=viewer.email.upper()
            )

    @pytest.mark.asyncio
    async def test_new_invitation_supersedes_pending_one(self, db_session: AsyncSession, album, owner):
        service = AlbumInvitationService(db_session)
        first = await service.create_invitation(album.id, owner.id, invited_email="Guest@Example.com")
        second = await service.create_invitation(album.id, owner.id, invited_email="guest@example.com")

        assert second.invitation.invited_email == "guest@example.com"
        assert (await stored_status(db_session, first.invitation.id))[0] == "revoked"
        assert (await stored_status(db_session, second.invitation.id))[0] == "pending"


class TestAcceptInvitation:
    @pytest.mark.asyncio
    async def test_single_use_accept(self, db_session: AsyncSession, album, owner, outsider):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id, invited_role="contributor")

        member = await service.accept_invitation(created.token, outsider.id)

        assert member.role == "contributor"
        assert member.added_by_id == owner.id
        assert await stored_status(db_session, created.invitation.id) == ("accepted", 1)

    @pytest.mark.asyncio
    async def test_multi_use_token(self, db_session: AsyncSession, album, owner, make_user):
        """A three-use link stays pending until the third acceptance, then is gone."""
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id, max_uses=3)
        users = [await make_user() for _ in range(4)]

        await service.accept_invitation(created.token, users[0].id)
        assert await stored_status(db_session, created.invitation.id) == ("pending", 1)

        await service.accept_invitation(created.token, users[1].id)
        assert await stored_status(db_session, created.invitation.id) == ("pending", 2)

        await service.accept_invitation(created.token, users[2].id)
        assert await stored_status(db_session, created.invitation.id) == ("accepted", 3)

        with pytest.raises(GoneError):
            await service.accept_invitation(created.token, users[3].id)

    @pytest.mark.asyncio
    async def test_anonymous_cannot_accept(self, db_session: AsyncSession, album, owner):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)

        with pytest.raises(ForbiddenError):
            await service.accept_invitation(created.token, None)

    @pytest.mark.asyncio
    async def test_unknown_token(self, db_session: AsyncSession, outsider):
        with pytest.raises(NotFoundError):
            await AlbumInvitationService(db_session).accept_invitation("not-a-token", outsider.id)

    @pytest.mark.asyncio
    async def test_existing_member_conflict(self, db_session: AsyncSession, album, owner, viewer):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)

        with pytest.raises(ConflictError):
            await service.accept_invitation(created.token, viewer.id)
        assert await stored_status(db_session, created.invitation.id) == ("pending", 0)

    @pytest.mark.asyncio
    async def test_expired_invitation_is_flipped_on_read(
        self, db_session: AsyncSession, album, owner, outsider
    ):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)
        await backdate_expiry(db_session, created.invitation.id)

        with pytest.raises(GoneError):
            await service.accept_invitation(created.token, outsider.id)

        assert await stored_status(db_session, created.invitation.id) == ("expired", 0)

    @pytest.mark.asyncio
    async def test_deleted_album_invitation_gone(self, db_session: AsyncSession, album, owner, outsider):
        from services.albums import AlbumService

        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)
        await AlbumService(db_session).delete_album(album.id, owner.id)

        with pytest.raises(GoneError):
            await service.accept_invitation(created.token, outsider.id)

    @pytest.mark.asyncio
    async def test_lost_race_for_last_use(
        self, db_session: AsyncSession, db_engine, album, owner, make_user
    ):
        """
        Another session consumes the last use after this one loaded the invitation.

        The conditional increment finds no row, so the acceptance is rejected
        and no membership is written.
        """
        album_id = album.id
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album_id, owner.id)
        invitation_id = created.invitation.id
        late = await make_user()
        late_id = late.id

        # This session now holds a pending, unused copy of the invitation
        await service._get_by_token(created.token)
        await db_session.commit()

        other = async_sessionmaker(db_engine, expire_on_commit=False)
        async with other() as competing:
            await competing.execute(
                update(AlbumInvitation)
                .where(AlbumInvitation.id == invitation_id)
                .values(use_count=1, status=InvitationStatus.ACCEPTED.value)
            )
            await competing.commit()

        with pytest.raises(ConflictError):
            await service.accept_invitation(created.token, late_id)

        result = await db_session.execute(
            select(AlbumMember.id).where(
                AlbumMember.album_id == album_id, AlbumMember.user_id == late_id
            )
        )
        assert result.first() is None


class TestPreviewInvitation:
    @pytest.mark.asyncio
    async def test_preview(self, db_session: AsyncSession, album, owner):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id, note="Join us")

        preview = await service.preview_invitation(created.token)

        assert preview.album.id == album.id
        assert preview.invited_by.id == owner.id
        assert preview.invitation.note == "Join us"

    @pytest.mark.asyncio
    async def test_preview_revoked_is_gone(self, db_session: AsyncSession, album, owner):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)
        await service.revoke_invitation(album.id, created.invitation.id, owner.id)

        with pytest.raises(GoneError):
            await service.preview_invitation(created.token)


class TestDeclineAndRevoke:
    @pytest.mark.asyncio
    async def test_decline(self, db_session: AsyncSession, album, owner, outsider):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)

        declined = await service.decline_invitation(created.token, outsider.id)

        assert declined.status == "declined"
        assert declined.declined_at is not None
        with pytest.raises(GoneError):
            await service.accept_invitation(created.token, outsider.id)

    @pytest.mark.asyncio
    async def test_decline_after_partial_use_is_terminal(
        self, db_session: AsyncSession, album, owner, make_user
    ):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id, max_uses=3)
        first, second = await make_user(), await make_user()
        await service.accept_invitation(created.token, first.id)

        await service.decline_invitation(created.token, second.id)

        assert await stored_status(db_session, created.invitation.id) == ("declined", 1)

    @pytest.mark.asyncio
    async def test_revoke(self, db_session: AsyncSession, album, owner, album_admin):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)

        revoked = await service.revoke_invitation(album.id, created.invitation.id, album_admin.id)

        assert revoked.status == "revoked"
        assert revoked.revoked_by_id == album_admin.id

    @pytest.mark.asyncio
    async def test_revoke_twice_conflict(self, db_session: AsyncSession, album, owner):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)
        await service.revoke_invitation(album.id, created.invitation.id, owner.id)

        with pytest.raises(ConflictError):
            await service.revoke_invitation(album.id, created.invitation.id, owner.id)

    @pytest.mark.asyncio
    async def test_revoke_stale_invitation_records_expiry(
        self, db_session: AsyncSession, album, owner
    ):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)
        await backdate_expiry(db_session, created.invitation.id)

        with pytest.raises(GoneError):
            await service.revoke_invitation(album.id, created.invitation.id, owner.id)

        assert await stored_status(db_session, created.invitation.id) == ("expired", 0)

    @pytest.mark.asyncio
    async def test_viewer_cannot_revoke(self, db_session: AsyncSession, album, owner, viewer):
        service = AlbumInvitationService(db_session)
        created = await service.create_invitation(album.id, owner.id)

        with pytest.raises(ForbiddenError):
            await service.revoke_invitation(album.id, created.invitation.id, viewer.id)

    @pytest.mark.asyncio
    async def test_list_by_status(self, db_session: AsyncSession, album, owner):
        service = AlbumInvitationService(db_session)
        kept = await service.create_invitation(album.id, owner.id)
        dropped = await service.create_invitation(album.id, owner.id)
        await service.revoke_invitation(album.id, dropped.invitation.id, owner.id)

        pending, total = await service.list_invitations(album.id, owner.id, status="pending")

        assert total == 1
        assert pending[0].id == kept.invitation.id
        with pytest.raises(ValidationError):
            await service.list_invitations(album.id, owner.id, status="lost")


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_expire_sweep(self, db_session: AsyncSession, album, owner):
        service = AlbumInvitationService(db_session)
        stale = await service.create_invitation(album.id, owner.id)
        fresh = await service.create_invitation(album.id, owner.id)
        await backdate_expiry(db_session, stale.invitation.id)

        assert await expire_old_invitations(db_session) == 1
        assert (await stored_status(db_session, stale.invitation.id))[0] == "expired"
        assert (await stored_status(db_session, fresh.invitation.id))[0] == "pending"

    @pytest.mark.asyncio
    async def test_cleanup_removes_old_terminal_only(self, db_session: AsyncSession, album, owner):
        service = AlbumInvitationService(db_session)
        old = await service.create_invitation(album.id, owner.id)
        live = await service.create_invitation(album.id, owner.id)
        await service.revoke_invitation(album.id, old.invitation.id, owner.id)

        await db_session.execute(
            update(AlbumInvitation)
            .where(AlbumInvitation.id.in_([old.invitation.id, live.invitation.id]))
            .values(updated_at=utcnow() - timedelta(days=60))
        )
        await db_session.commit()

        assert await cleanup_old_invitations(db_session, days_old=30) == 1
        remaining = await db_session.execute(
            select(AlbumInvitation.id).where(AlbumInvitation.album_id == album.id)
        )
        assert remaining.scalars().all() == [live.invitation.id]
