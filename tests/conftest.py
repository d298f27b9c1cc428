"""
Test configuration and fixtures
In-memory SQLite per test, fake key-value store and a mocked notifier
"""

import os

# Set test environment before anything from app is imported
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-123456"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-that-is-long-enough-1234"
os.environ["SENDGRID_API_KEY"] = ""
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Any, Dict, Optional
from datetime import date, time, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

# Import all models BEFORE creating fixtures (critical for create_all to work)
from app.core.database import Base
from app.models.user import User
from app.models.session import Session, SessionStatus, SkillLevel

from app.core.security import create_access_token, security_manager
from app.services.registration_service import RegistrationService
from app.services.session_service import SessionService

TEST_PASSWORD = "TestPass123!"


class FakeKeyValueStore:
    """Dict-backed stand-in for the Redis store; TTLs are recorded, not enforced"""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.ttls: Dict[str, int] = {}

    async def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        self.data[key] = value
        if ttl:
            self.ttls[key] = ttl
        return True

    async def incr(self, key: str) -> int:
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def expire(self, key: str, ttl: int) -> bool:
        self.ttls[key] = ttl
        return key in self.data

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.data.pop(key, None) is not None


@pytest_asyncio.fixture(scope="function")
async def test_db():
    """Fresh in-memory database per test"""
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


@pytest_asyncio.fixture(scope="function")
async def db_session(test_db) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async_session_maker = async_sessionmaker(
        test_db,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


@pytest.fixture
def kv_store():
    return FakeKeyValueStore()


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.notify.return_value = True
    return mock


@pytest.fixture
def registration_service(notifier, kv_store):
    return RegistrationService(notifier=notifier, kv_store=kv_store)


@pytest.fixture
def session_service(notifier):
    return SessionService(notifier=notifier)


@pytest_asyncio.fixture
async def client(db_session, kv_store, notifier):
    """Create test client with dependency override"""
    from app.main import app
    from app.core.database import get_session
    from app.core.redis import get_kv_store
    from app.services.email_service import get_notifier

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_kv_store] = lambda: kv_store
    app.dependency_overrides[get_notifier] = lambda: notifier

    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


# User fixtures
@pytest_asyncio.fixture
async def make_user(db_session):
    """Factory creating committed users"""

    async def _make_user(is_admin: bool = False, is_banned: bool = False, **overrides) -> User:
        suffix = uuid4().hex[:8]
        user = User(
            email=overrides.pop("email", f"member_{suffix}@nyu.edu"),
            password_hash=security_manager.hash_password(TEST_PASSWORD),
            first_name=overrides.pop("first_name", "Test"),
            last_name=overrides.pop("last_name", f"Member {suffix}"),
            phone_number=overrides.pop("phone_number", "+15551234567"),
            is_admin=is_admin,
            is_banned=is_banned,
            no_show_count=overrides.pop("no_show_count", 0),
            **overrides
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest_asyncio.fixture
async def test_user(make_user):
    return await make_user()


@pytest_asyncio.fixture
async def test_admin(make_user):
    return await make_user(is_admin=True, first_name="Admin")


# Session fixtures
@pytest_asyncio.fixture
async def make_session(db_session):
    """Factory creating committed sessions, dated a week out by default"""

    async def _make_session(
        spots_total: int = 4,
        spots_available: Optional[int] = None,
        status: SessionStatus = SessionStatus.OPEN,
        days_from_today: int = 7,
        **overrides
    ) -> Session:
        session = Session(
            name=overrides.pop("name", "Sunday Doubles"),
            location=overrides.pop("location", "Palladium Courts"),
            date=date.today() + timedelta(days=days_from_today),
            time=overrides.pop("time", time(10, 0)),
            skill_levels=overrides.pop("skill_levels", [SkillLevel.INTERMEDIATE.value]),
            spots_total=spots_total,
            spots_available=spots_total if spots_available is None else spots_available,
            status=status,
            is_archived=False,
            **overrides
        )
        db_session.add(session)
        await db_session.commit()
        return session

    return _make_session


@pytest_asyncio.fixture
async def test_session(make_session):
    return await make_session()


def auth_headers_for(user: User) -> Dict[str, str]:
    token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "is_admin": user.is_admin}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers_user(test_user):
    """Generate auth headers for test user"""
    return auth_headers_for(test_user)


@pytest.fixture
def auth_headers_admin(test_admin):
    """Generate auth headers for admin user"""
    return auth_headers_for(test_admin)


@pytest.fixture
def auth_headers():
    """Header builder for arbitrary users"""
    return auth_headers_for
