"""
Test infrastructure for the forum API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces all async tasks to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped; a new connection would see an empty database.
- The app's get_db dependency is overridden so every test-time request uses
  the test session factory rather than the production one.
- All tables are created fresh before each test and dropped after.
- The shared connection means sessions are not isolated from each other.
  Tests about concurrent writers use ``isolated_session_factory``: a
  file-backed database where every session gets its own connection.
- The key-value store gets an in-memory FakeRedis so sessions and reset
  tokens work without a Redis server.
"""
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import NullPool, StaticPool

from forum.database import Base, build_engine, build_sessionmaker, get_db
from forum.kv import kv
from forum.main import app

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

engine_test = build_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
async_session_test = build_sessionmaker(engine_test)


async def override_get_db():
    session = async_session_test()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fake Redis
# ---------------------------------------------------------------------------

class FakeRedis:
    """The subset of ``redis.asyncio.Redis`` used by ``KeyValueStore``."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self):
        return True

    async def aclose(self):
        pass


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def fake_redis() -> FakeRedis:
    fake = FakeRedis()
    kv._redis = fake
    yield fake
    kv._redis = None


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """
    Yield a live AsyncSession for tests that need to interact with the
    database directly (e.g. seeding data, asserting ORM state).
    """
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def session_factory():
    """The test session factory, for tests that need a second, independent session."""
    return async_session_test


@pytest_asyncio.fixture
async def isolated_session_factory(tmp_path):
    """
    Session factory over a file-backed SQLite database with no pooling,
    so two sessions never share a connection or a transaction.
    """
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'isolated.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def async_client(fake_redis) -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


