"""Unauthenticated album endpoints: public album pages and invitation previews."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.album import (
    ErrorResponse,
    InvitationPreviewResponse,
    PublicAlbumResponse,
    PublicPhotoResponse,
)
from infrastructure.database import get_db
from services.album_invitations import AlbumInvitationService
from services.albums import AlbumService
from services.photo_visibility import PhotoVisibilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Public"])


@router.get(
    "/public/albums/{token}",
    response_model=PublicAlbumResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_public_album(token: str, db: AsyncSession = Depends(get_db)):
    """
    Public album page by share token.

    Returns 404 once the album is made private, since that clears the token.
    Only album-default photos are listed.
    """
    album = await AlbumService(db).get_album_by_public_token(token)
    photos = await PhotoVisibilityService(db).list_visible_photos(album.id, subject_id=None)

    return PublicAlbumResponse(
        id=album.id,
        name=album.name,
        description=album.description,
        created_at=album.created_at,
        photos=[PublicPhotoResponse.model_validate(photo) for photo in photos],
    )


@router.get(
    "/invitations/{token}",
    response_model=InvitationPreviewResponse,
    responses={404: {"model": ErrorResponse}, 410: {"model": ErrorResponse}},
)
async def preview_invitation(token: str, db: AsyncSession = Depends(get_db)):
    """
    Preview an invitation (no authentication required, the token is the credential).

    Returns 410 for expired, revoked, declined or used-up invitations.
    """
    preview = await AlbumInvitationService(db).preview_invitation(token)
    invitation = preview.invitation

    return InvitationPreviewResponse(
        album_id=preview.album.id,
        album_name=preview.album.name,
        album_description=preview.album.description,
        inviter_name=preview.invited_by.name if preview.invited_by else None,
        role=invitation.invited_role,
        note=invitation.note,
        expires_at=invitation.expires_at,
        max_uses=invitation.max_uses,
        use_count=invitation.use_count,
    )
