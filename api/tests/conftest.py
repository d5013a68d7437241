"""Pytest configuration and fixtures.

Each test gets its own SQLite file database. Every SQLite transaction starts
with BEGIN IMMEDIATE (see citypulse.database), so concurrent sessions in a
test are serialized the way row locks serialize them on PostgreSQL.

Keep sessions short-lived (`async with session_factory() as db:`): an open
session holds the write lock and would block requests made through `client`.
"""

import secrets
import uuid
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from citypulse.config import settings
from citypulse.database import build_engine, get_db
from citypulse.dependencies import hash_api_key
from citypulse.main import app
from citypulse.middleware.rate_limiter import build_rate_limiters
from citypulse.models import Base, EntryType, LedgerEntry, Report, Reward, User


@pytest.fixture
async def engine(tmp_path):
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'citypulse.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client wired to the per-test database with fresh rate limiters."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.rate_limiters = build_rate_limiters(settings)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
    app.state.rate_limiters = None
    app.state.chat_service = None
    app.state.blob_store = None


@pytest.fixture
def make_user(session_factory):
    """Create a user; returns (user, raw_api_key)."""

    async def _make_user(is_admin: bool = False, display_name: str | None = None):
        raw_key = secrets.token_urlsafe(16)
        async with session_factory() as db:
            user = User(
                email=f"{uuid.uuid4().hex[:8]}@example.com",
                display_name=display_name,
                api_key_hash=hash_api_key(raw_key),
                is_admin=is_admin,
            )
            db.add(user)
            await db.commit()
        return user, raw_key

    return _make_user


@pytest.fixture
def make_report(session_factory):
    async def _make_report(user_id: uuid.UUID, title: str = "Pothole on Main St") -> Report:
        async with session_factory() as db:
            report = Report(
                user_id=user_id,
                title=title,
                description="Deep pothole near the crosswalk",
                category="roads",
                latitude=40.0,
                longitude=-74.0,
                photos=[],
            )
            db.add(report)
            await db.commit()
        return report

    return _make_report


@pytest.fixture
def make_reward(session_factory):
    async def _make_reward(
        cost: int = 50,
        stock: int = 1,
        title: str = "$5 Coffee Shop Gift Card",
        is_active: bool = True,
    ) -> Reward:
        async with session_factory() as db:
            reward = Reward(
                title=title,
                description="Test reward",
                cost=cost,
                stock_quantity=stock,
                is_active=is_active,
            )
            db.add(reward)
            await db.commit()
        return reward

    return _make_reward


@pytest.fixture
def grant_credits(session_factory):
    """Post an earned entry directly, bypassing any award policy."""

    async def _grant(user_id: uuid.UUID, amount: int, reason: str = "test grant") -> None:
        async with session_factory() as db:
            db.add(
                LedgerEntry(
                    user_id=user_id,
                    amount=amount,
                    reason=reason,
                    type=EntryType.earned.value,
                )
            )
            await db.commit()

    return _grant
