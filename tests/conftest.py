"""
Test infrastructure for the articlehub API.

Strategy
--------
- SQLite in-memory via aiosqlite removes the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces every session to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped; a new connection would see an empty database.
- Each test builds its own engine and app through ``create_app(settings,
  engine)``, so nothing is shared between tests (or event loops) and no
  dependency override is needed.
- Redis is never connected: ``CacheManager`` treats a missing client as
  a permanent miss, so the real database paths are exercised.
- bcrypt runs at its minimum cost to keep registration/login tests fast.
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from articlehub.config import Settings
from articlehub.database import Base, install_sqlite_foreign_keys
from articlehub.main import create_app
from articlehub.models import Role, User
from articlehub.security import create_access_token, hash_password

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        REDIS_URL=None,
        DEBUG=False,
        JWT_SECRET=SecretStr("test-secret-key-with-at-least-32-bytes!"),
        BCRYPT_ROUNDS=4,
    )


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database with all tables, dropped after the test."""
    engine_test = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    install_sqlite_foreign_keys(engine_test)
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine_test
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine_test.dispose()


@pytest.fixture
def app(test_settings, engine):
    return create_app(test_settings, engine=engine)


@pytest_asyncio.fixture
async def db_session(app) -> AsyncSession:
    """
    A live AsyncSession on the app's own session factory, for tests that
    seed data or call service functions directly.
    """
    async with app.state.session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def async_client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_user(app, test_settings):
    """
    Factory fixture: insert a user with the given role and return
    ``(user, auth_headers)``.  Bypasses registration so tests can create
    ADMIN accounts.
    """
    async def _make_user(email: str, role: Role = Role.USER, name: str | None = None):
        async with app.state.session_factory() as session:
            user = User(
                email=email,
                password_hash=hash_password(TEST_PASSWORD, rounds=4),
                name=name,
                role=role.value,
            )
            session.add(user)
            await session.commit()
        token = create_access_token(sub=user.id, role=user.role, settings=test_settings)
        return user, {"Authorization": f"Bearer {token}"}

    return _make_user
