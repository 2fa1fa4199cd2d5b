"""
API request and response schemas.
"""

from .album import (
    ErrorResponse,
    InvitationPreviewResponse,
    PublicAlbumResponse,
    PublicPhotoResponse,
)

__all__ = [
    "ErrorResponse",
    "InvitationPreviewResponse",
    "PublicAlbumResponse",
    "PublicPhotoResponse",
]
