"""
Pytest fixtures for the directory tests.

Environment is pinned before anything under src is imported: an in-memory
SQLite default and cheap bcrypt rounds.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["AUDIT_FAIL_OPEN"] = "true"

from src.config import get_settings  # noqa: E402

get_settings.cache_clear()

from dataclasses import dataclass  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from src.database import build_engine  # noqa: E402
from src.kernel.identity.jwt import create_access_token  # noqa: E402
from src.kernel.models import Base  # noqa: E402
from src.kernel.notifications.dispatcher import RecordingDispatcher  # noqa: E402
from tests.factories import Directory, build_directory, seed  # noqa: E402


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def directory(db_session: AsyncSession) -> Directory:
    people = build_directory()
    await seed(db_session, people)
    return people


@pytest.fixture
def notifier() -> RecordingDispatcher:
    return RecordingDispatcher(frontend_url="https://app.example.com")


@dataclass
class ApiHarness:
    """HTTP client plus direct database access for API tests."""

    client: AsyncClient
    people: Directory
    session_maker: async_sessionmaker
    notifier: RecordingDispatcher

    def auth(self, name: str) -> dict:
        user = getattr(self.people, name)
        token, _, _ = create_access_token(user.id, user.email, user.role.value)
        return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def api(tmp_path, monkeypatch, notifier) -> AsyncGenerator[ApiHarness, None]:
    """
    The application wired to a throwaway file database.

    The real get_db runs, so commit/rollback behaviour is exercised; only the
    session factory behind it and the notification channel are swapped.
    """
    from src.api import deps
    from src.main import app

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'directory.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    people = build_directory()
    async with maker() as session:
        await seed(session, people)
        await session.commit()

    monkeypatch.setattr(deps, "async_session_maker", maker)
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield ApiHarness(client=client, people=people, session_maker=maker, notifier=notifier)
    finally:
        app.dependency_overrides.pop(deps.get_notifier, None)
        await engine.dispose()
