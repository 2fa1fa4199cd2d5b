"""
Fire-and-forget notification dispatch.

Invitation e-mails are sent on the running event loop after the invitation
has been committed. A failed or slow send never affects the caller.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, Optional

from adapters.email.resend_adapter import ResendEmailService, email_service

logger = logging.getLogger(__name__)

# Strong references keep pending sends alive until they finish
_pending_sends: set[asyncio.Task] = set()


def _on_send_done(task: asyncio.Task) -> None:
    _pending_sends.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Invitation e-mail dispatch failed: %s",
            exc,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
    elif task.result() is False:
        logger.warning("Invitation e-mail was not delivered")


def _schedule(coro: Coroutine[Any, Any, bool], name: str) -> Optional[asyncio.Task]:
    try:
        task = asyncio.create_task(coro, name=name)
    except RuntimeError:
        # No running loop (sync caller); nothing to dispatch on
        coro.close()
        logger.warning("No running event loop, dropping %s", name)
        return None
    _pending_sends.add(task)
    task.add_done_callback(_on_send_done)
    return task


def dispatch_invitation_email(
    to_email: str,
    inviter_name: str,
    album_name: str,
    role: str,
    raw_token: str,
    expires_in_days: int,
    note: Optional[str] = None,
    sender: Optional[ResendEmailService] = None,
) -> Optional[asyncio.Task]:
    """
    Schedule an album invitation e-mail without awaiting it.

    Returns:
        The scheduled task (tests await it), or None when nothing was scheduled
    """
    sender = sender or email_service
    coro = sender.send_album_invitation_email(
        to_email=to_email,
        inviter_name=inviter_name,
        album_name=album_name,
        role=role,
        invitation_url=sender.invitation_url(raw_token),
        expires_in_days=expires_in_days,
        note=note,
    )
    return _schedule(coro, name="album-invitation-email")


async def drain_pending_sends() -> None:
    """Wait for in-flight sends (used on shutdown)."""
    if _pending_sends:
        await asyncio.gather(*list(_pending_sends), return_exceptions=True)
