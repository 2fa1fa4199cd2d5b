"""
Per-photo visibility.

Visibility is layered on top of album permissions: callers must already hold
album:view. Three states:

    album_default  anyone who may view the album
    restricted     album owner, uploader and the photo's allowlist
    hidden         album owner and uploader only, regardless of role

Allowlist rewrites (type update, delete old rows, insert new rows) run in a
single transaction; validation happens before the transaction opens.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from sqlalchemy import and_, delete, or_, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.permissions import AlbumAction
from infrastructure.config.settings import settings
from infrastructure.database.models import (
    ActivityType,
    AlbumMember,
    Photo,
    PhotoVisibilityGrant,
    PhotoVisibilityType,
)
from services.activity_log import log_activity
from services.album_permissions import AlbumPermissionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisibilityDecision:
    allowed: bool
    reason: str


def parse_visibility_type(value: str) -> PhotoVisibilityType:
    try:
        return PhotoVisibilityType(value)
    except ValueError:
        raise ValidationError(f"Invalid visibility type: {value}") from None


def decide_visibility(
    photo: Photo,
    subject_id: Optional[str],
    album_owner_id: Optional[str],
    allowlisted: bool = False,
) -> VisibilityDecision:
    """Pure visibility rule for one photo. ``allowlisted`` only matters for restricted photos."""
    if subject_id is not None and subject_id in (album_owner_id, photo.uploaded_by_id):
        return VisibilityDecision(True, "Owner or uploader bypass")

    if photo.visibility_type == PhotoVisibilityType.ALBUM_DEFAULT:
        return VisibilityDecision(True, "Album default visibility")

    if subject_id is None:
        return VisibilityDecision(False, "Authentication required to view this photo")

    if photo.visibility_type == PhotoVisibilityType.HIDDEN:
        return VisibilityDecision(False, "This photo is hidden")

    if allowlisted:
        return VisibilityDecision(True, "User is in restricted allowlist")
    return VisibilityDecision(False, "You are not allowed to view this restricted photo")


def build_visibility_filter(
    subject_id: Optional[str],
    album_owner_id: Optional[str],
) -> ColumnElement[bool]:
    """
    SQL clause selecting the photos a subject may see in one album.

    Mirrors ``decide_visibility`` for list and search queries.
    """
    if subject_id is not None and subject_id == album_owner_id:
        return true()

    if subject_id is None:
        return Photo.visibility_type == PhotoVisibilityType.ALBUM_DEFAULT.value

    allowlisted = (
        select(PhotoVisibilityGrant.id)
        .where(
            PhotoVisibilityGrant.photo_id == Photo.id,
            PhotoVisibilityGrant.user_id == subject_id,
        )
        .exists()
    )
    return or_(
        Photo.visibility_type == PhotoVisibilityType.ALBUM_DEFAULT.value,
        Photo.uploaded_by_id == subject_id,
        and_(Photo.visibility_type == PhotoVisibilityType.RESTRICTED.value, allowlisted),
    )


class PhotoVisibilityService:
    """Resolves and changes per-photo visibility."""

    build_visibility_filter = staticmethod(build_visibility_filter)

    def __init__(self, db: AsyncSession, permissions: Optional[AlbumPermissionService] = None):
        self.db = db
        self.permissions = permissions or AlbumPermissionService(db)

    async def _get_photo(self, photo_id: str) -> Photo:
        result = await self.db.execute(
            select(Photo).where(Photo.id == photo_id, Photo.deleted_at.is_(None))
        )
        photo = result.scalar_one_or_none()
        if photo is None:
            raise NotFoundError("Photo")
        return photo

    async def _is_allowlisted(self, photo_id: str, user_id: str) -> bool:
        result = await self.db.execute(
            select(PhotoVisibilityGrant.id).where(
                PhotoVisibilityGrant.photo_id == photo_id,
                PhotoVisibilityGrant.user_id == user_id,
            )
        )
        return result.first() is not None

    # ========================================================================
    # Reads
    # ========================================================================

    async def resolve(
        self,
        photo_id: str,
        subject_id: Optional[str],
        album_owner_id: Optional[str],
    ) -> VisibilityDecision:
        """
        Decide whether a subject may see a photo.

        Assumes the caller has already passed the album:view check.
        """
        photo = await self._get_photo(photo_id)
        return await self._resolve_loaded(photo, subject_id, album_owner_id)

    async def _resolve_loaded(
        self,
        photo: Photo,
        subject_id: Optional[str],
        album_owner_id: Optional[str],
    ) -> VisibilityDecision:
        allowlisted = False
        if (
            subject_id is not None
            and photo.visibility_type == PhotoVisibilityType.RESTRICTED
            and subject_id not in (album_owner_id, photo.uploaded_by_id)
        ):
            allowlisted = await self._is_allowlisted(photo.id, subject_id)

        decision = decide_visibility(photo, subject_id, album_owner_id, allowlisted)
        logger.debug(
            "Photo visibility %s: %s",
            "allowed" if decision.allowed else "denied",
            decision.reason,
            extra={"photo_id": photo.id, "user_id": subject_id},
        )
        return decision

    async def assert_can_view_photo(
        self,
        photo_id: str,
        subject_id: Optional[str],
        system_role: Optional[str] = None,
    ) -> Photo:
        """
        Album view permission first, then photo visibility.

        Raises:
            NotFoundError: Photo or album missing
            ForbiddenError: Either check denied
        """
        photo = await self._get_photo(photo_id)
        album_decision = await self.permissions.assert_permission(
            photo.album_id, subject_id, AlbumAction.ALBUM_VIEW, system_role
        )

        decision = await self._resolve_loaded(photo, subject_id, album_decision.album.owner_id)
        if not decision.allowed:
            raise ForbiddenError(decision.reason)
        return photo

    async def list_visible_photos(
        self,
        album_id: str,
        subject_id: Optional[str],
        system_role: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> list[Photo]:
        """Photos of an album the subject may see, oldest first."""
        context = await self.permissions.resolve_access(album_id, subject_id, system_role)

        result = await self.db.execute(
            select(Photo)
            .where(
                Photo.album_id == album_id,
                Photo.deleted_at.is_(None),
                build_visibility_filter(subject_id, context.album.owner_id),
            )
            .order_by(Photo.created_at.asc(), Photo.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all())

    async def get_allowlist(self, photo_id: str) -> list[str]:
        """User ids on a photo's allowlist."""
        await self._get_photo(photo_id)
        result = await self.db.execute(
            select(PhotoVisibilityGrant.user_id)
            .where(PhotoVisibilityGrant.photo_id == photo_id)
            .order_by(PhotoVisibilityGrant.created_at)
        )
        return list(result.scalars().all())

    # ========================================================================
    # Writes
    # ========================================================================

    def _validate_allowlist_shape(
        self,
        visibility_type: PhotoVisibilityType,
        allowed_user_ids: Sequence[str],
    ) -> None:
        if visibility_type == PhotoVisibilityType.RESTRICTED and not allowed_user_ids:
            raise ValidationError("allowed_user_ids required for restricted photos")
        if visibility_type != PhotoVisibilityType.RESTRICTED and allowed_user_ids:
            raise ValidationError("allowed_user_ids can only be used with restricted visibility")

    async def _validate_allowlist_members(
        self,
        album_id: str,
        allowed_user_ids: Sequence[str],
    ) -> None:
        if not allowed_user_ids:
            return
        result = await self.db.execute(
            select(AlbumMember.user_id).where(
                AlbumMember.album_id == album_id,
                AlbumMember.user_id.in_(allowed_user_ids),
            )
        )
        found = set(result.scalars().all())
        invalid = [user_id for user_id in allowed_user_ids if user_id not in found]
        if invalid:
            raise ValidationError(
                f"Users not found in album: {', '.join(invalid)}",
                details={"invalid_user_ids": invalid},
            )

    def _insert_grants(
        self,
        photo_ids: Iterable[str],
        allowed_user_ids: Sequence[str],
        granted_by_id: str,
    ) -> None:
        self.db.add_all(
            PhotoVisibilityGrant(
                id=str(uuid4()),
                photo_id=photo_id,
                user_id=user_id,
                granted_by_id=granted_by_id,
            )
            for photo_id in photo_ids
            for user_id in allowed_user_ids
        )

    async def _rewrite_visibility(
        self,
        photo_ids: Sequence[str],
        visibility_type: PhotoVisibilityType,
        allowed_user_ids: Sequence[str],
        actor_id: str,
    ) -> None:
        """Type update, allowlist delete, allowlist insert: one commit or nothing."""
        try:
            await self.db.execute(
                update(Photo)
                .where(Photo.id.in_(photo_ids))
                .values(visibility_type=visibility_type.value)
            )
            await self.db.execute(
                delete(PhotoVisibilityGrant).where(PhotoVisibilityGrant.photo_id.in_(photo_ids))
            )
            if visibility_type == PhotoVisibilityType.RESTRICTED:
                self._insert_grants(photo_ids, allowed_user_ids, actor_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def set_visibility(
        self,
        photo_id: str,
        visibility_type: str,
        allowed_user_ids: Optional[Sequence[str]],
        actor_id: str,
        system_role: Optional[str] = None,
    ) -> Photo:
        """
        Change one photo's visibility and allowlist.

        Permission: the uploader, or anyone holding photo:delete on the album.

        Raises:
            ValidationError: Bad type, bad allowlist shape or non-member ids
            NotFoundError: Photo or album missing
            ForbiddenError: Neither uploader nor album admin
        """
        parsed = parse_visibility_type(visibility_type)
        user_ids = list(dict.fromkeys(allowed_user_ids or []))

        photo = await self._get_photo(photo_id)
        album_decision = await self.permissions.resolve(
            photo.album_id, actor_id, AlbumAction.PHOTO_DELETE, system_role
        )
        if photo.uploaded_by_id != actor_id and not album_decision.allowed:
            raise ForbiddenError("Only the uploader or album admin can change photo visibility")

        self._validate_allowlist_shape(parsed, user_ids)
        await self._validate_allowlist_members(photo.album_id, user_ids)

        previous = photo.visibility_type
        await self._rewrite_visibility([photo.id], parsed, user_ids, actor_id)

        await log_activity(
            self.db,
            album_id=photo.album_id,
            actor_id=actor_id,
            activity_type=ActivityType.PHOTO_VISIBILITY_CHANGED,
            target_type="photo",
            target_id=photo.id,
            details={
                "previous": previous,
                "visibility_type": parsed.value,
                "allowed_user_ids": user_ids,
            },
        )
        logger.info(
            "Photo visibility set to %s",
            parsed.value,
            extra={"album_id": photo.album_id, "photo_id": photo.id, "user_id": actor_id},
        )
        return photo

    async def bulk_set_visibility(
        self,
        album_id: str,
        photo_ids: Sequence[str],
        visibility_type: str,
        allowed_user_ids: Optional[Sequence[str]],
        actor_id: str,
        system_role: Optional[str] = None,
    ) -> list[Photo]:
        """
        Change visibility of many photos of one album, all or nothing.

        Every photo is permission-checked before the transaction opens; one
        denied photo rejects the whole batch with the offending ids.
        """
        ids = list(dict.fromkeys(photo_ids or []))
        if not ids:
            raise ValidationError("photo_ids must not be empty")
        if len(ids) > settings.bulk_visibility_max_photos:
            raise ValidationError(
                f"Cannot change visibility of more than "
                f"{settings.bulk_visibility_max_photos} photos at once"
            )

        parsed = parse_visibility_type(visibility_type)
        user_ids = list(dict.fromkeys(allowed_user_ids or []))
        self._validate_allowlist_shape(parsed, user_ids)

        album_decision = await self.permissions.resolve(
            album_id, actor_id, AlbumAction.PHOTO_DELETE, system_role
        )

        result = await self.db.execute(
            select(Photo).where(
                Photo.id.in_(ids),
                Photo.album_id == album_id,
                Photo.deleted_at.is_(None),
            )
        )
        photos = {photo.id: photo for photo in result.scalars().all()}

        missing = [photo_id for photo_id in ids if photo_id not in photos]
        if missing:
            raise NotFoundError("Photo", details={"missing_photo_ids": missing})

        if not album_decision.allowed:
            denied = [photo_id for photo_id in ids if photos[photo_id].uploaded_by_id != actor_id]
            if denied:
                raise ForbiddenError(
                    "Only the uploader or album admin can change photo visibility",
                    details={"denied_photo_ids": denied},
                )

        await self._validate_allowlist_members(album_id, user_ids)

        await self._rewrite_visibility(ids, parsed, user_ids, actor_id)

        await log_activity(
            self.db,
            album_id=album_id,
            actor_id=actor_id,
            activity_type=ActivityType.PHOTO_VISIBILITY_CHANGED,
            target_type="photo",
            details={
                "photo_ids": ids,
                "visibility_type": parsed.value,
                "allowed_user_ids": user_ids,
            },
        )
        logger.info(
            "Visibility set to %s for %d photos",
            parsed.value,
            len(ids),
            extra={"album_id": album_id, "user_id": actor_id},
        )
        return [photos[photo_id] for photo_id in ids]
