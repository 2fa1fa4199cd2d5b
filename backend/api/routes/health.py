"""Liveness and readiness probes for the album engine."""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.config import get_settings
from infrastructure.database import get_db
from infrastructure.database.models import Album, AlbumInvitation, AlbumMember

logger = logging.getLogger(__name__)

router = APIRouter()

# Tables every album request touches
_CORE_TABLES = (Album, AlbumMember, AlbumInvitation)
_DB_CHECK_TIMEOUT_SECONDS = 5.0


def _service_info() -> dict:
    settings = get_settings()
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health")
async def health_check():
    """Process is up. Does not touch the database."""
    return {"status": "healthy", **_service_info()}


async def _probe_tables(db: AsyncSession) -> list[str]:
    checked = []
    for model in _CORE_TABLES:
        await db.execute(select(model.id).limit(1))
        checked.append(model.__tablename__)
    return checked


@router.get("/health/db")
async def health_check_db(db: AsyncSession = Depends(get_db)):
    """Readiness: the album, membership and invitation tables are queryable."""
    try:
        tables = await asyncio.wait_for(_probe_tables(db), timeout=_DB_CHECK_TIMEOUT_SECONDS)
    except TimeoutError:
        logger.error("Album tables did not answer within %.0fs", _DB_CHECK_TIMEOUT_SECONDS)
        database, tables = "timeout", []
    except Exception as exc:
        logger.error("Album tables unreachable: %s", exc)
        database, tables = "unavailable", []
    else:
        database = "connected"

    body = {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
        "tables": tables,
        **_service_info(),
    }
    code = status.HTTP_200_OK if database == "connected" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=body)
