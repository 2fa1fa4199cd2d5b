"""
Album engine error taxonomy.

Every service raises one of these. The API layer maps ``status_code`` to the
HTTP response and uses ``public_message`` for anonymous callers so that deny
reasons never leak the existence of albums, members or invitations.
"""

from typing import Any, Optional


class AlbumServiceError(Exception):
    """Base exception for album engine errors."""

    status_code: int = 500
    code: str = "internal_error"
    public_message: str = "Request failed"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_public_payload(self, authenticated: bool) -> dict[str, Any]:
        """Build the response body for a caller.

        Authenticated callers get the descriptive message and details,
        anonymous callers only get the generic message for the error class.
        """
        if not authenticated:
            return {"detail": self.public_message, "code": self.code}
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(AlbumServiceError):
    """Raised when an album, photo, member or invitation does not exist."""

    status_code = 404
    code = "not_found"
    public_message = "Not found"

    def __init__(self, resource: str = "Resource", details: Optional[dict[str, Any]] = None):
        super().__init__(f"{resource} not found", details)
        self.resource = resource


class ForbiddenError(AlbumServiceError):
    """Raised on a resolved deny, a role-change guard violation or a deny override."""

    status_code = 403
    code = "forbidden"
    public_message = "Forbidden"

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class ConflictError(AlbumServiceError):
    """Raised on duplicate membership or a lost uniqueness race."""

    status_code = 409
    code = "conflict"
    public_message = "Conflict"


class GoneError(AlbumServiceError):
    """Raised when an invitation is expired, revoked, declined or exhausted."""

    status_code = 410
    code = "gone"
    public_message = "Gone"

    def __init__(
        self,
        message: str = "This resource is no longer available",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class ValidationError(AlbumServiceError):
    """Raised on bad input: unknown action, bad allowlist, invalid role."""

    status_code = 400
    code = "validation_error"
    public_message = "Invalid request"
