"""
Fixtures for auth service tests.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from ums.core.email import DeliveryResult, EmailNotifier
from ums.core.security import hash_password
from ums.modules.auth.service import CodePolicy
from ums.modules.users import User, UserRole


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.refresh = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def mock_notifier():
    """Notifier that reports delivery through the fallback channel."""
    notifier = AsyncMock(spec=EmailNotifier)
    notifier.deliver = AsyncMock(return_value=DeliveryResult(channel="fallback"))
    return notifier


@pytest.fixture
def policy() -> CodePolicy:
    return CodePolicy(
        ttl=timedelta(minutes=10),
        cooldown=timedelta(seconds=60),
        max_attempts=5,
        expose_debug_codes=True,
    )


@pytest.fixture
def sample_user() -> User:
    """An active student with password ``secret123``."""
    return User(
        id=uuid4(),
        name="Ravi Kumar",
        username="ravi",
        email="ravi@uni.edu",
        password_hash=hash_password("secret123"),
        role=UserRole.STUDENT,
        avatar="",
        is_email_verified=False,
        is_active=True,
    )
