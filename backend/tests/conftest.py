import os

# Set test environment
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "change-me-in-production"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["DATABASE_URL"] = os.environ["TEST_DATABASE_URL"]

from collections.abc import AsyncGenerator, Callable
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from interidesign.database import Base, get_db
from interidesign.main import app
from interidesign.models import User
from interidesign.services.session_service import SessionService
from interidesign.utils.auth import get_current_user
from interidesign.utils.jwks import clear_jwks_cache
from interidesign.utils.passwords import hash_password

TEST_DATABASE_URL = os.environ["TEST_DATABASE_URL"]
TEST_PASSWORD = "correct-horse-battery"


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create a fresh schema for each test."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        engine = create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database session override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_jwks_cache():
    clear_jwks_cache()
    yield
    clear_jwks_cache()


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession) -> Callable:
    """Factory for users with a local password."""

    async def _make(role: str = "designer", **overrides) -> User:
        unique = uuid4().hex[:8]
        fields = {
            "username": f"user_{unique}",
            "display_name": "Test User",
            "email": f"test-{unique}@example.com",
            "role": role,
            "hashed_password": hash_password(TEST_PASSWORD),
            "is_active": True,
            "identities": [],
        }
        fields.update(overrides)
        user = User(**fields)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make


@pytest_asyncio.fixture
async def test_user(make_user) -> User:
    return await make_user()


@pytest_asyncio.fixture
async def admin_user(make_user) -> User:
    return await make_user(role="admin", display_name="Studio Admin")


@pytest_asyncio.fixture
async def auth_headers(db_session: AsyncSession, test_user: User) -> dict[str, str]:
    """Bearer headers carrying a real session token for test_user."""
    _, token = await SessionService(db_session).create(test_user)
    await db_session.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def act_as():
    """Sign in as a given user by overriding the current-user dependency."""

    def _act_as(user: User) -> None:
        async def _override() -> User:
            return user

        app.dependency_overrides[get_current_user] = _override

    yield _act_as
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
def password() -> str:
    """Plain-text password of every make_user account."""
    return TEST_PASSWORD
