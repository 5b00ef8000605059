"""pytest configuration and fixtures."""

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from anonchat.database.models import Base, User, UserStatus


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions really use separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'anonchat.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_pool(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_pool):
    async with session_pool() as session:
        yield session


@pytest.fixture
def make_user(session):
    """Insert a user row directly. Ids double as creation order in the queue."""

    async def _make(telegram_id: int, **fields) -> User:
        user = User(telegram_id=telegram_id, **fields)
        session.add(user)
        await session.commit()
        return user

    return _make


@pytest.fixture
def make_pair(make_user):
    async def _make(user1: int, user2: int, **fields):
        await make_user(user1, status=UserStatus.CHATTING, partner_id=user2, **fields)
        await make_user(user2, status=UserStatus.CHATTING, partner_id=user1)

    return _make


async def load_users(session) -> dict[int, User]:
    result = await session.execute(select(User).execution_options(populate_existing=True))
    return {u.telegram_id: u for u in result.scalars()}


async def assert_pairing_consistent(session):
    """Chatting iff partner is set and points back."""
    users = await load_users(session)
    for user in users.values():
        if user.status == UserStatus.CHATTING:
            assert user.partner_id is not None
            partner = users[user.partner_id]
            assert partner.status == UserStatus.CHATTING
            assert partner.partner_id == user.telegram_id
        else:
            assert user.partner_id is None
