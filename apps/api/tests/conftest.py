"""
UMS API - Test Configuration and Fixtures
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

# Set testing environment before the application reads its settings
os.environ["PYTHON_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-testing"
os.environ["OTP_SECRET"] = "test-otp-secret"
os.environ["CHALLENGE_BACKEND"] = "memory"
os.environ["RESEND_API_KEY"] = ""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ums.core.database import Base, get_db
from ums.core.email import EmailNotifier
from ums.core.rate_limit import reset_memory_store
from ums.core.security import create_access_token
from ums.main import app
from ums.modules.academics import models as academics_models  # noqa: F401
from ums.modules.challenges.backends import InMemoryChallengeBackend
from ums.modules.challenges.store import ChallengeStore
from ums.modules.users import User, UserRepository, UserRole

TEST_SECRET = "test-otp-secret"


class FakeClock:
    """Settable clock for challenge expiry and cooldown tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=UTC))


@pytest.fixture
def backend() -> InMemoryChallengeBackend:
    return InMemoryChallengeBackend()


@pytest.fixture
def store(backend, clock) -> ChallengeStore:
    return ChallengeStore(backend=backend, secret=TEST_SECRET, clock=clock)


# ============================================
# Database
# ============================================


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """A fresh database session per test on an in-memory database."""
    session_maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, store: ChallengeStore
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the database and challenge store overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.challenge_store = store
    app.state.notifier = EmailNotifier(api_key=None)
    reset_memory_store()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================
# Users
# ============================================


@pytest_asyncio.fixture
async def student(db_session: AsyncSession) -> User:
    user = await UserRepository.create(
        db_session,
        name="Asha Student",
        email="asha@uni.edu",
        password="secret123",
        role=UserRole.STUDENT,
        username="asha",
    )
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    user = await UserRepository.create(
        db_session,
        name="Admin",
        email="admin@uni.edu",
        password="adminpass",
        role=UserRole.ADMIN,
    )
    await db_session.commit()
    await db_session.refresh(user)
    return user


def _auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(subject=str(user.id), additional_claims={"role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Build bearer headers for any user."""
    return _auth_headers


@pytest.fixture
def student_headers(student: User) -> dict[str, str]:
    return _auth_headers(student)


@pytest.fixture
def admin_headers(admin: User) -> dict[str, str]:
    return _auth_headers(admin)
