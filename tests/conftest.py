"""
Pytest fixtures for testing.

Provides:
- Fake clock for expiry tests
- In-memory policy store, audit sink and engine components
- Async database session (SQLite in-memory)
- Test client with dependency overrides
- Factory fixtures for creating users and auth headers
"""

from datetime import datetime, timedelta
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from accessguard.main import app
from accessguard.core.config import settings
from accessguard.core.auth.backends import MemoryAuditSink, MemoryPolicyStore
from accessguard.core.auth.catalog import Role, RoleCatalog
from accessguard.core.auth.dependencies import get_audit_sink
from accessguard.core.auth.hierarchy import HierarchyGuard
from accessguard.core.auth.interceptor import Authorization
from accessguard.core.auth.ownership import OwnershipRegistry
from accessguard.core.auth.resolver import PermissionResolver
from accessguard.api.dependencies.database import get_db
from accessguard.models.base import Base
from accessguard.models.user import User
from accessguard.utils.timezone import UTC


# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============ Clock ============


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============ Engine Components ============


@pytest.fixture
def catalog() -> RoleCatalog:
    return RoleCatalog.default()


@pytest.fixture
def store(clock: FakeClock) -> MemoryPolicyStore:
    return MemoryPolicyStore(clock=clock)


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def resolver(store, catalog, audit, clock) -> PermissionResolver:
    return PermissionResolver(store, catalog, audit=audit, clock=clock)


@pytest.fixture
def guard(store, catalog) -> HierarchyGuard:
    return HierarchyGuard(store, catalog)


@pytest.fixture
def ownership() -> OwnershipRegistry:
    return OwnershipRegistry()


@pytest.fixture
def authz(resolver, guard, ownership, audit) -> Authorization:
    return Authorization(resolver, guard, ownership, audit)


# ============ Database ============


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Database session; rolled back after each test."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db: AsyncSession, audit: MemoryAuditSink) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client with database session and audit sink overrides.
    """

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: audit

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ============ Factory Fixtures ============


class UserFactory:
    """Factory for creating test users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        role: Role = Role.CLIENT,
        email: str | None = None,
        name: str = "Test User",
        is_active: bool = True,
    ) -> User:
        email = email or f"test-{uuid4().hex[:8]}@example.com"
        user = User(email=email, name=name, role=role, is_active=is_active)
        self.db.add(user)
        await self.db.commit()
        return user


@pytest_asyncio.fixture
async def user_factory(db: AsyncSession) -> UserFactory:
    return UserFactory(db)


# ============ Auth Helpers ============


def make_token(subject: str) -> str:
    return jwt.encode(
        {"sub": subject},
        settings.auth.secret_key,
        algorithm=settings.auth.algorithm,
    )


def auth_headers_for(user: User | str) -> dict[str, str]:
    """Bearer headers for a user or a raw subject."""
    subject = str(user.id) if isinstance(user, User) else user
    return {"Authorization": f"Bearer {make_token(subject)}"}


@pytest.fixture
def headers_for():
    """Fixture form of auth_headers_for."""
    return auth_headers_for
