"""
Test configuration and fixtures
FastAPI + SQLAlchemy async + pytest, against in-memory SQLite and fakeredis
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from datetime import datetime, timedelta, timezone
from uuid import uuid4
import os

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from fakeredis import aioredis as fake_aioredis
from httpx import AsyncClient, ASGITransport

# Set test environment before app.config is imported
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["SUMMARY_CACHE_ENABLED"] = "false"
os.environ["ANALYTICS_ASYNC_INGESTION"] = "false"
os.environ["PROMETHEUS_ENABLED"] = "false"
os.environ["LOG_FILE"] = ""

# Import all models BEFORE creating fixtures (critical for create_all to work)
from app.core.database import Base
from app.models.analytics import AnalyticsEvent  # noqa: F401
from app.core.security import create_access_token
from app.services.analytics_service import AnalyticsService
from app.services.enrichment import EventEnricher, StaticGeoLocator
from app.services.live_streams import StaticLiveStreamCounter

FIXED_NOW = datetime(2024, 5, 15, 12, 0, 0, tzinfo=timezone.utc)

DESKTOP_CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture(scope="function")
async def test_db():
    """Create async database engine for tests"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_db):
    return async_sessionmaker(
        test_db,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def live_streams():
    return StaticLiveStreamCounter(3)


@pytest.fixture
def service(clock, live_streams):
    """Analytics service with deterministic collaborators"""
    return AnalyticsService(
        enricher=EventEnricher(StaticGeoLocator("FR", "Paris")),
        live_stream_counter=live_streams,
        clock=clock,
    )


@pytest_asyncio.fixture
async def redis_client():
    """Fresh fakeredis instance per test"""
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def client(db_session, service, redis_client, monkeypatch):
    """Create test client with dependency override"""
    from app.main import app
    from app.core.database import get_session
    from app.services.analytics_service import get_analytics_service
    import app.core.redis as redis_module

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_analytics_service] = lambda: service
    monkeypatch.setattr(redis_module, "redis_client", redis_client)

    try:
        # Use raise_app_exceptions=False to prevent anyio.WouldBlock errors
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


def _bearer(user_id, role: str) -> dict:
    token = create_access_token(data={"sub": str(user_id), "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def auth_headers_user(user_id):
    """Generate auth headers for a regular user"""
    return _bearer(user_id, "user")


@pytest.fixture
def auth_headers_admin():
    """Generate auth headers for an admin"""
    return _bearer(uuid4(), "admin")


@pytest.fixture
def session_headers():
    """Anonymous caller identified only by a session id"""
    return {"X-Session-ID": f"sess-{uuid4().hex[:12]}", "User-Agent": DESKTOP_CHROME_UA}
