"""
Integration tests for album activity records.

Tests cover:
- One record per state-changing operation
- Filtering and paging
- Recording failures never reaching the caller
- Records are immutable
"""

from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import ActivityType
from services import activity_log
from services.activity_log import get_album_activity, log_activity
from services.album_members import AlbumMemberService
from services.albums import AlbumService


class TestActivityRecords:
    @pytest.mark.asyncio
    async def test_album_creation_recorded(self, db_session: AsyncSession, album, owner):
        entries, total = await get_album_activity(db_session, album.id)

        assert total == 1
        assert entries[0].type == ActivityType.ALBUM_CREATED.value
        assert entries[0].actor_id == owner.id
        assert entries[0].details == {"name": "Family", "is_public": False}

    @pytest.mark.asyncio
    async def test_member_operations_recorded(self, db_session: AsyncSession, album, owner, outsider):
        service = AlbumMemberService(db_session)
        await service.add_member(album.id, outsider.id, "viewer", requester_id=owner.id)
        await service.change_member_role(album.id, outsider.id, "contributor", requester_id=owner.id)
        await service.remove_member(album.id, outsider.id, requester_id=owner.id)

        entries, total = await get_album_activity(db_session, album.id)
        types = {entry.type for entry in entries}

        assert total == 4
        assert {
            ActivityType.MEMBER_ADDED.value,
            ActivityType.MEMBER_ROLE_CHANGED.value,
            ActivityType.MEMBER_REMOVED.value,
        } <= types

    @pytest.mark.asyncio
    async def test_visibility_change_recorded(self, db_session: AsyncSession, album, owner):
        await AlbumService(db_session).update_album(album.id, owner.id, is_public=True)

        entries, _ = await get_album_activity(
            db_session, album.id, activity_type=ActivityType.ALBUM_VISIBILITY_CHANGED.value
        )

        assert len(entries) == 1
        assert entries[0].details["visibility_change"] == "private_to_public"

    @pytest.mark.asyncio
    async def test_filter_by_actor_and_paging(self, db_session: AsyncSession, album, owner, viewer):
        await AlbumService(db_session).update_album(album.id, owner.id, name="Renamed")
        await AlbumMemberService(db_session).remove_member(album.id, viewer.id, requester_id=viewer.id)

        by_viewer, viewer_total = await get_album_activity(db_session, album.id, actor_id=viewer.id)
        first_page, total = await get_album_activity(db_session, album.id, page=1, page_size=2)

        assert viewer_total == 1
        assert by_viewer[0].type == ActivityType.MEMBER_REMOVED.value
        assert total == 3
        assert len(first_page) == 2


class TestRecordingFailures:
    @pytest.mark.asyncio
    async def test_unbound_session_is_swallowed(self, caplog):
        broken = SimpleNamespace(bind=None)

        entry = await log_activity(broken, "album-1", "user-1", ActivityType.ALBUM_UPDATED)

        assert entry is None
        assert "Failed to record album activity" in caplog.text

    @pytest.mark.asyncio
    async def test_operation_succeeds_when_recording_fails(
        self, db_session: AsyncSession, album, owner, monkeypatch
    ):
        def _broken_entry(**kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(activity_log, "AlbumActivityLog", _broken_entry)

        updated = await AlbumService(db_session).update_album(album.id, owner.id, name="Still saved")

        assert updated.name == "Still saved"
        context = await AlbumService(db_session).get_album(album.id, owner.id)
        assert context.album.name == "Still saved"

    @pytest.mark.asyncio
    async def test_records_are_immutable(self, db_session: AsyncSession, album):
        entries, _ = await get_album_activity(db_session, album.id)
        entries[0].details = {"tampered": True}

        with pytest.raises(ValueError):
            await db_session.flush()
        await db_session.rollback()
