"""
Mapping of album engine errors to HTTP responses.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.exceptions import AlbumServiceError

logger = logging.getLogger(__name__)


def is_authenticated(request: Request) -> bool:
    """Whether an upstream auth layer attached a subject to the request."""
    return getattr(request.state, "subject_id", None) is not None


async def album_service_error_handler(request: Request, exc: AlbumServiceError) -> JSONResponse:
    authenticated = is_authenticated(request)

    # The descriptive reason always reaches the logs, never an anonymous caller
    logger.info(
        "%s: %s",
        type(exc).__name__,
        exc.message,
        extra={"path": request.url.path, "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_public_payload(authenticated),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AlbumServiceError, album_service_error_handler)
