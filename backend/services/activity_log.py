"""
Album activity (audit) logging.

Every state-changing album operation records one immutable row. Recording
is best-effort: the primary operation has already been committed when the
record is written, and a failure here is logged and never re-raised.
"""

import logging
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import ActivityType, AlbumActivityLog

logger = logging.getLogger(__name__)


async def log_activity(
    db: AsyncSession,
    album_id: str,
    actor_id: Optional[str],
    activity_type: ActivityType | str,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> Optional[AlbumActivityLog]:
    """
    Write one audit record in a separate session on the caller's engine.

    Args:
        db: Session of the primary operation (only its bind is used)
        album_id: Album the event belongs to
        actor_id: User that performed the operation
        activity_type: Event type
        target_type: Kind of resource acted upon ("member", "photo", ...)
        target_id: Id of that resource
        details: Event specific context

    Returns:
        The stored record, or None when recording failed
    """
    type_value = activity_type.value if isinstance(activity_type, ActivityType) else activity_type

    try:
        entry = AlbumActivityLog(
            id=str(uuid4()),
            album_id=album_id,
            actor_id=actor_id,
            type=type_value,
            target_type=target_type,
            target_id=target_id,
            details=details,
        )
        async with AsyncSession(bind=db.bind, expire_on_commit=False) as audit_session:
            audit_session.add(entry)
            await audit_session.commit()
    except Exception:
        logger.exception(
            "Failed to record album activity %s",
            type_value,
            extra={"album_id": album_id, "user_id": actor_id},
        )
        return None

    return entry


async def get_album_activity(
    db: AsyncSession,
    album_id: str,
    page: int = 1,
    page_size: int = 50,
    actor_id: Optional[str] = None,
    activity_type: Optional[str] = None,
) -> tuple[list[AlbumActivityLog], int]:
    """Newest-first page of an album's activity plus the total count."""
    filters = [AlbumActivityLog.album_id == album_id]
    if actor_id:
        filters.append(AlbumActivityLog.actor_id == actor_id)
    if activity_type:
        filters.append(AlbumActivityLog.type == activity_type)

    total = await db.scalar(select(func.count()).select_from(AlbumActivityLog).where(*filters))

    offset = (page - 1) * page_size
    result = await db.execute(
        select(AlbumActivityLog)
        .where(*filters)
        .order_by(AlbumActivityLog.created_at.desc(), AlbumActivityLog.id)
        .offset(offset)
        .limit(page_size)
    )
    return list(result.scalars().all()), total or 0
