"""Shared test fixtures.

Every test gets its own SQLite file database (aiosqlite) with the schema
created from the ORM metadata; Redis is left uninitialised so rate limiting
and event publishing are skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from realmquest.config import get_settings
from realmquest.database import close_db, get_engine, get_session_factory, init_db
from realmquest.db.base import Base
from realmquest.db.models import Badge, Realm, Task, User
from realmquest.realms.service import create_realm, create_task
from realmquest.users.service import create_user

# Midday, so "today" and "yesterday" are unambiguous in UTC
NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RQ_TIMEZONE", "UTC")
    monkeypatch.setenv("RQ_JWT_SECRET", "test-secret-that-is-long-enough-for-hs256")
    monkeypatch.setenv("RQ_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[str, None]:
    """Fresh database file with all tables created."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'realmquest.db'}"
    await init_db(url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield url
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: str) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    user = await create_user(db_session, "aria")
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def realm(db_session: AsyncSession, user: User) -> Realm:
    realm = await create_realm(db_session, user, "Ember Peaks", theme="fire")
    await db_session.commit()
    return realm


async def add_task(db: AsyncSession, realm: Realm, difficulty: str = "easy", title: str = "Slay the dragon") -> Task:
    """Create and commit a pending task."""
    refreshed = await db.get(Realm, realm.id, populate_existing=True)
    task = await create_task(db, refreshed, title, difficulty)
    await db.commit()
    return task


async def grant_badge(db: AsyncSession, user_id: int, badge_type: str = "first_clear") -> Badge:
    """Mark a badge as already earned (keeps first-clear bonus XP out of arithmetic)."""
    badge = Badge(
        user_id=user_id,
        badge_type=badge_type,
        name=badge_type.replace("_", " ").title(),
        description="earned earlier",
        rarity="common",
        progress=1,
        target=1,
        completed=True,
        earned_at=NOW,
    )
    db.add(badge)
    await db.commit()
    return badge


async def fresh(db: AsyncSession, model: type, pk: int):
    """Reload a row from the database, discarding identity-map state."""
    return await db.get(model, pk, populate_existing=True)


@pytest_asyncio.fixture
async def client(database: str) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client bound to the per-test database."""
    from realmquest.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, user: User) -> AsyncClient:
    """Client carrying a bearer token for ``user``."""
    from realmquest.auth.jwt import create_access_token

    client.headers["Authorization"] = f"Bearer {create_access_token(user.id)}"
    return client


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_task(db_session: AsyncSession):
    async def _make(realm: Realm, difficulty: str = "easy", title: str = "Slay the dragon") -> Task:
        return await add_task(db_session, realm, difficulty, title)

    return _make


@pytest.fixture
def earned_badge(db_session: AsyncSession):
    async def _earn(user_id: int, badge_type: str = "first_clear") -> Badge:
        return await grant_badge(db_session, user_id, badge_type)

    return _earn


@pytest.fixture
def reload(db_session: AsyncSession):
    async def _reload(model: type, pk: int):
        return await fresh(db_session, model, pk)

    return _reload
