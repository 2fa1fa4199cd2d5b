"""
Pytest configuration and shared fixtures for backend tests.
"""

import os
import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# The application engine is created at import time; point it at SQLite
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from typing import AsyncGenerator, Optional
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from core.permissions import AlbumRole
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Album,
    AlbumMember,
    Base,
    Photo,
    PhotoVisibilityType,
    User,
    UserRole,
)
from services.albums import AlbumService


# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session (same options as the application factory)."""
    async_session = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory creating committed users."""

    async def _make_user(
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: str = UserRole.USER.value,
    ) -> User:
        suffix = uuid4().hex[:8]
        user = User(
            id=str(uuid4()),
            email=email or f"user-{suffix}@example.com",
            name=name or f"User {suffix}",
            role=role,
            status="active",
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_album(db_session: AsyncSession):
    """Factory creating albums (with owner membership) through the album service."""

    async def _make_album(owner: User, name: str = "Holiday", is_public: bool = False) -> Album:
        return await AlbumService(db_session).create_album(
            owner_id=owner.id, name=name, is_public=is_public
        )

    return _make_album


@pytest.fixture
def add_member(db_session: AsyncSession):
    """Factory inserting a membership row directly."""

    async def _add_member(album: Album, user: User, role: str = AlbumRole.VIEWER.value) -> AlbumMember:
        member = AlbumMember(
            id=str(uuid4()),
            album_id=album.id,
            user_id=user.id,
            role=role,
            added_by_id=album.owner_id,
        )
        db_session.add(member)
        await db_session.commit()
        return member

    return _add_member


@pytest.fixture
def make_photo(db_session: AsyncSession):
    """Factory creating photos."""

    async def _make_photo(
        album: Album,
        uploader: User,
        visibility_type: str = PhotoVisibilityType.ALBUM_DEFAULT.value,
        filename: Optional[str] = None,
    ) -> Photo:
        photo = Photo(
            id=str(uuid4()),
            album_id=album.id,
            uploaded_by_id=uploader.id,
            filename=filename or f"{uuid4().hex[:8]}.jpg",
            visibility_type=visibility_type,
        )
        db_session.add(photo)
        await db_session.commit()
        return photo

    return _make_photo


# ============================================================================
# Common scenario fixtures
# ============================================================================


@pytest.fixture
async def owner(make_user) -> User:
    return await make_user(name="Olivia Owner", email="owner@example.com")


@pytest.fixture
async def album(make_album, owner: User) -> Album:
    """Private album owned by ``owner``."""
    return await make_album(owner, name="Family")


@pytest.fixture
async def public_album(make_album, owner: User) -> Album:
    return await make_album(owner, name="Open House", is_public=True)


@pytest.fixture
async def album_admin(make_user, add_member, album: Album) -> User:
    user = await make_user(name="Ada Admin")
    await add_member(album, user, AlbumRole.ADMIN.value)
    return user


@pytest.fixture
async def contributor(make_user, add_member, album: Album) -> User:
    user = await make_user(name="Cody Contributor")
    await add_member(album, user, AlbumRole.CONTRIBUTOR.value)
    return user


@pytest.fixture
async def viewer(make_user, add_member, album: Album) -> User:
    user = await make_user(name="Vera Viewer")
    await add_member(album, user, AlbumRole.VIEWER.value)
    return user


@pytest.fixture
async def outsider(make_user) -> User:
    return await make_user(name="Otto Outsider")


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
