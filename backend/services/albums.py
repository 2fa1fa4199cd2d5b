"""
Album lifecycle service.

Permission checks are always delegated to AlbumPermissionService. Every
mutation follows the same flow: assert permission, write inside a single
commit, record activity, return the album.
"""

import logging
from typing import Optional
from uuid import uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictError, ForbiddenError, NotFoundError
from core.permissions import AlbumAction, AlbumRole, is_system_operator
from core.security.tokens import generate_public_token
from infrastructure.database.models import ActivityType, Album, AlbumMember
from infrastructure.database.models.base import utcnow
from services.activity_log import log_activity
from services.album_permissions import AlbumAccessContext, AlbumPermissionService

logger = logging.getLogger(__name__)

# Sentinel for "field not supplied" in partial updates
_UNSET = object()


class AlbumService:
    """Album create/read/update/delete with visibility transitions."""

    def __init__(self, db: AsyncSession, permissions: Optional[AlbumPermissionService] = None):
        self.db = db
        self.permissions = permissions or AlbumPermissionService(db)

    async def create_album(
        self,
        owner_id: str,
        name: str,
        description: Optional[str] = None,
        is_public: bool = False,
    ) -> Album:
        """
        Create an album. The creator becomes its owner member in the same commit.

        Args:
            owner_id: Creating user
            name: Album name
            description: Optional description
            is_public: Public albums get a share token immediately

        Returns:
            The new album
        """
        album = Album(
            id=str(uuid4()),
            owner_id=owner_id,
            name=name,
            description=description,
            is_public=is_public,
            public_token=generate_public_token() if is_public else None,
        )
        owner_membership = AlbumMember(
            id=str(uuid4()),
            album_id=album.id,
            user_id=owner_id,
            role=AlbumRole.OWNER.value,
            added_by_id=owner_id,
        )

        self.db.add(album)
        await self.db.flush()
        self.db.add(owner_membership)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await log_activity(
            self.db,
            album_id=album.id,
            actor_id=owner_id,
            activity_type=ActivityType.ALBUM_CREATED,
            target_type="album",
            target_id=album.id,
            details={"name": name, "is_public": is_public},
        )
        logger.info("Album created", extra={"album_id": album.id, "user_id": owner_id})
        return album

    async def get_album(
        self,
        album_id: str,
        subject_id: Optional[str],
        system_role: Optional[str] = None,
    ) -> AlbumAccessContext:
        """Fetch an album with the caller's access context (raises if no access)."""
        return await self.permissions.resolve_access(album_id, subject_id, system_role)

    async def list_albums(
        self,
        subject_id: Optional[str],
        owner_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Album], int]:
        """
        List albums visible to the subject.

        - ``owner_id`` given: all of the owner's albums for the owner, only
          public ones for anyone else
        - authenticated feed: public albums plus albums the subject belongs to
        - anonymous: public albums only
        """
        filters = [Album.deleted_at.is_(None)]

        if owner_id:
            filters.append(Album.owner_id == owner_id)
            if subject_id != owner_id:
                filters.append(Album.is_public.is_(True))
        elif subject_id:
            member_album_ids = select(AlbumMember.album_id).where(
                AlbumMember.user_id == subject_id
            )
            filters.append(or_(Album.is_public.is_(True), Album.id.in_(member_album_ids)))
        else:
            filters.append(Album.is_public.is_(True))

        total = await self.db.scalar(select(func.count()).select_from(Album).where(*filters))
        result = await self.db.execute(
            select(Album)
            .where(*filters)
            .order_by(Album.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    async def update_album(
        self,
        album_id: str,
        subject_id: str,
        system_role: Optional[str] = None,
        name=_UNSET,
        description=_UNSET,
        is_public=_UNSET,
    ) -> Album:
        """
        Update album fields and handle visibility transitions.

        Private -> public generates a fresh share token, public -> private
        clears it. Flag and token are written in the same commit.
        """
        decision = await self.permissions.assert_permission(
            album_id, subject_id, AlbumAction.ALBUM_EDIT, system_role
        )
        album = decision.album

        before: dict = {}
        after: dict = {}
        visibility_change: Optional[str] = None

        if name is not _UNSET and name != album.name:
            before["name"], after["name"] = album.name, name
            album.name = name
        if description is not _UNSET and description != album.description:
            before["description"], after["description"] = album.description, description
            album.description = description
        if is_public is not _UNSET and bool(is_public) != album.is_public:
            before["is_public"], after["is_public"] = album.is_public, bool(is_public)
            if is_public:
                album.is_public = True
                album.public_token = generate_public_token()
                visibility_change = "private_to_public"
            else:
                album.is_public = False
                album.public_token = None
                visibility_change = "public_to_private"

        if not after:
            return album

        await self.db.commit()

        details = {"before": before, "after": after}
        if visibility_change:
            details["visibility_change"] = visibility_change
        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=subject_id,
            activity_type=(
                ActivityType.ALBUM_VISIBILITY_CHANGED
                if visibility_change
                else ActivityType.ALBUM_UPDATED
            ),
            target_type="album",
            target_id=album_id,
            details=details,
        )
        logger.info("Album updated", extra={"album_id": album_id, "user_id": subject_id})
        return album

    async def delete_album(
        self,
        album_id: str,
        subject_id: str,
        system_role: Optional[str] = None,
    ) -> None:
        """Soft delete. The public link is disabled in the same commit."""
        decision = await self.permissions.assert_permission(
            album_id, subject_id, AlbumAction.ALBUM_DELETE, system_role
        )
        album = decision.album

        album.is_public = False
        album.public_token = None
        album.deleted_at = utcnow()
        await self.db.commit()

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=subject_id,
            activity_type=ActivityType.ALBUM_DELETED,
            target_type="album",
            target_id=album_id,
            details={"name": album.name},
        )
        logger.info("Album soft-deleted", extra={"album_id": album_id, "user_id": subject_id})

    async def restore_album(
        self,
        album_id: str,
        subject_id: str,
        system_role: Optional[str] = None,
    ) -> Album:
        """Restore a soft-deleted album. Owner or system operator only.

        The album comes back private; sharing must be re-enabled explicitly.
        """
        result = await self.db.execute(select(Album).where(Album.id == album_id))
        album = result.scalar_one_or_none()
        if album is None:
            raise NotFoundError("Album")
        if album.is_active:
            raise ConflictError("Album is not deleted")

        if album.owner_id != subject_id and not is_system_operator(
            system_role, self.permissions.operator_roles
        ):
            raise ForbiddenError("Only the album owner can restore this album")

        album.deleted_at = None
        await self.db.commit()

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=subject_id,
            activity_type=ActivityType.ALBUM_RESTORED,
            target_type="album",
            target_id=album_id,
            details={"name": album.name},
        )
        logger.info("Album restored", extra={"album_id": album_id, "user_id": subject_id})
        return album

    async def get_album_by_public_token(self, token: str) -> Album:
        """
        Resolve a public album by its share token.

        Raises:
            NotFoundError: No live public album holds this token (e.g. it was
                made private, which clears the token)
        """
        result = await self.db.execute(
            select(Album).where(
                Album.public_token == token,
                Album.is_public.is_(True),
                Album.deleted_at.is_(None),
            )
        )
        album = result.scalar_one_or_none()
        if album is None:
            raise NotFoundError("Album")
        return album
