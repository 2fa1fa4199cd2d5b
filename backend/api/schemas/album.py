"""
Album and invitation API schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class PublicPhotoResponse(BaseModel):
    """Photo as shown on a public album page."""

    id: str
    filename: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PublicAlbumResponse(BaseModel):
    """Public album details (no authentication required)."""

    id: str
    name: str
    description: Optional[str] = None
    created_at: datetime
    photos: List[PublicPhotoResponse] = []

    model_config = ConfigDict(from_attributes=True)


class InvitationPreviewResponse(BaseModel):
    """Invitation details shown to the token holder before accepting."""

    album_id: str
    album_name: str
    album_description: Optional[str] = None
    inviter_name: Optional[str] = None
    role: str
    note: Optional[str] = None
    expires_at: datetime
    max_uses: Optional[int] = None
    use_count: int


class ErrorResponse(BaseModel):
    """Error body returned for album engine errors."""

    detail: str
    code: str
    details: Optional[dict] = None
