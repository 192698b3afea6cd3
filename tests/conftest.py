from datetime import UTC, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cardswap.api.dependencies import get_clock, get_notifier
from cardswap.db.database import get_session, get_session_factory
from cardswap.db.operations import add_cards, add_friendship, create_user, upsert_card
from cardswap.main import app
from cardswap.models.db import Base
from cardswap.services.locks import reset_keyed_lock
from cardswap.services.notifications import RecordingNotificationChannel

START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def fresh_locks():
    """Give every test its own process-wide lock family."""
    reset_keyed_lock()
    yield
    reset_keyed_lock()


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotificationChannel:
    return RecordingNotificationChannel()


class FakeClock:
    """Settable clock for time-dependent services."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class SequenceCodes:
    """Room code generator that hands out a fixed sequence, then repeats the last code."""

    def __init__(self, *codes: str):
        self.codes = list(codes)
        self.calls = 0

    def __call__(self) -> str:
        code = self.codes[min(self.calls, len(self.codes) - 1)]
        self.calls += 1
        return code


class Seeder:
    """Writes fixture data in its own committed unit of work."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def users(self, *user_ids: str) -> None:
        async with self.session_factory() as session, session.begin():
            for user_id in user_ids:
                await create_user(session, user_id, f"{user_id}-name")

    async def friends(self, user_id: str, friend_id: str) -> None:
        async with self.session_factory() as session, session.begin():
            await add_friendship(session, user_id, friend_id)

    async def cards(self, *cards: tuple[str, str], set_id: str | None = None) -> None:
        """Add catalog cards as (card_id, rarity) pairs."""
        async with self.session_factory() as session, session.begin():
            for card_id, rarity in cards:
                await upsert_card(session, card_id, card_id.title(), rarity, set_id=set_id)

    async def give(self, owner_id: str, card_id: str, quantity: int = 1) -> None:
        async with self.session_factory() as session, session.begin():
            await add_cards(session, owner_id, card_id, quantity, tradeable=True)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def make_codes() -> type[SequenceCodes]:
    return SequenceCodes


@pytest.fixture
async def client(session_factory, notifier, clock):
    """Provide an async test client wired to the in-memory database."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


@pytest.fixture
def headers():
    """Request headers identifying the caller."""
    return as_user
