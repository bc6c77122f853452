# tests/conftest.py — Shared test fixtures
import asyncio
import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"

from models import Base, User  # noqa: E402
from auth import AuthService  # noqa: E402
from database import get_db_session  # noqa: E402
from notification_gateway import NotificationGateway  # noqa: E402
from main import app  # noqa: E402


class FakeConnection:
    """Records everything pushed to it, like a connected browser tab"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(data)


class StalledConnection(FakeConnection):
    """A tab whose socket blocks until the test releases it"""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_json(self, data):
        await self.release.wait()
        self.sent.append(data)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    """Fresh gateway installed on the app for the duration of a test"""
    previous = app.state.notification_gateway
    fresh = NotificationGateway()
    app.state.notification_gateway = fresh
    yield fresh
    app.state.notification_gateway = previous


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, gateway):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await gateway.drain()
    app.dependency_overrides.clear()


async def make_user(db_session, email: str, password: str = "Password123") -> User:
    user = User(email=email, password_hash=AuthService.hash_password(password))
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def owner(db_session):
    return await make_user(db_session, "owner@example.com")


@pytest_asyncio.fixture
async def bob(db_session):
    return await make_user(db_session, "bob@example.com")


@pytest_asyncio.fixture
async def stranger(db_session):
    return await make_user(db_session, "stranger@example.com")


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token({"sub": user.id, "email": user.email})
    return {"Authorization": f"Bearer {token}"}
