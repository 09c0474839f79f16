"""
User Repository

Database operations for the user directory and credential store.
Callers own the transaction: methods flush, services commit.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ums.core.security import hash_password, verify_password
from ums.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    """Trim and lower-case an email address for storage and lookup."""
    return (email or "").strip().lower()


class UserRepository:
    """Repository for user database operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        name: str,
        email: str,
        password: str,
        role: UserRole,
        username: str | None = None,
        is_active: bool = True,
    ) -> User:
        """
        Create a new user with a hashed password.

        Args:
            db: Database session
            name: Display name
            email: Email address (normalized before storage)
            password: Plaintext password
            role: User's role
            username: Optional login alias (lower-cased)
            is_active: Whether the account can sign in

        Returns:
            Created User instance
        """
        user = User(
            name=name,
            email=normalize_email(email),
            username=username.strip().lower() if username else None,
            password_hash=hash_password(password),
            role=role,
            is_active=is_active,
        )
        db.add(user)
        await db.flush()

        logger.info(f"Created user: {user.id} ({user.role.value})")
        return user

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: str | UUID) -> User | None:
        if isinstance(user_id, str):
            try:
                user_id = UUID(user_id)
            except ValueError:
                return None
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        result = await db.execute(select(User).where(User.email == normalize_email(email)))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active_by_email(db: AsyncSession, email: str) -> User | None:
        result = await db.execute(
            select(User).where(
                User.email == normalize_email(email),
                User.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_identifier(db: AsyncSession, identifier: str) -> User | None:
        """Look a user up by email or username."""
        value = normalize_email(identifier)
        result = await db.execute(
            select(User).where(or_(User.email == value, User.username == value))
        )
        return result.scalars().first()

    @staticmethod
    async def email_in_use_by_other(db: AsyncSession, email: str, user_id: UUID) -> bool:
        """
        Check whether another account already owns an email address.

        Args:
            db: Database session
            email: Address to check
            user_id: The account that wants the address

        Returns:
            True if a different user holds the address
        """
        result = await db.execute(
            select(User.id).where(User.email == normalize_email(email), User.id != user_id)
        )
        return result.first() is not None

    @staticmethod
    def check_password(user: User, plaintext: str) -> bool:
        return verify_password(plaintext, user.password_hash)

    @staticmethod
    async def set_password(db: AsyncSession, user: User, plaintext: str) -> None:
        user.password_hash = hash_password(plaintext)
        await db.flush()
        logger.info(f"Password updated for user {user.id}")

    @staticmethod
    async def set_verified_email(
        db: AsyncSession, user: User, email: str, verified_at: datetime
    ) -> None:
        user.email = normalize_email(email)
        user.is_email_verified = True
        user.email_verified_at = verified_at
        await db.flush()
        logger.info(f"Email verified for user {user.id}")

    @staticmethod
    async def get_students(db: AsyncSession, user_ids: Iterable[UUID]) -> list[User]:
        """Return the users among ``user_ids`` whose role is student."""
        ids = list(user_ids)
        if not ids:
            return []
        result = await db.execute(
            select(User).where(User.id.in_(ids), User.role == UserRole.STUDENT)
        )
        return list(result.scalars().all())
