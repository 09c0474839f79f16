"""
Authentication and Authorization Module

FastAPI dependencies that resolve the bearer token to an active user and
enforce role checks.

SECURITY NOTE:
- Tokens are validated by ``decode_token`` (signature, algorithm, expiry)
- The user is re-loaded on every request so deactivation takes effect
  immediately
"""

import logging
from collections.abc import Callable, Coroutine
from typing import Any
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ums.core.database import get_db
from ums.core.security import decode_token
from ums.modules.users.models import User, UserRole
from ums.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI documentation
security = HTTPBearer(
    auto_error=False,
    description="JWT Bearer token for authentication",
)


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to an active user.

    Raises:
        HTTPException 401: Missing, invalid or expired token, or the user
            no longer exists or is inactive
    """
    if credentials is None:
        raise _unauthorized("TOKEN_REQUIRED", "Authorization token is required.")

    payload = decode_token(credentials.credentials)
    if payload is None:
        logger.warning("Invalid or expired JWT token")
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    if payload.get("type", "access") != "access":
        raise _unauthorized("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError as e:
        raise _unauthorized(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e

    user = await UserRepository.get_by_id(db, user_id)
    if user is None or not user.is_active:
        logger.warning(f"Token presented for missing or inactive user {user_id}")
        raise _unauthorized("USER_NOT_AUTHORIZED", "User is not authorized.")

    return user


def require_roles(*roles: UserRole) -> Callable[..., Coroutine[Any, Any, User]]:
    """
    Build a dependency that only admits users with one of ``roles``.

    Usage:
        @router.post("/sections")
        async def create_section(admin: User = Depends(require_roles(UserRole.ADMIN))):
            ...
    """

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            logger.warning(
                f"Access denied: user {user.id} has role '{user.role.value}', "
                f"requires one of {[role.value for role in roles]}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "FORBIDDEN",
                    "message": "You are not allowed to access this resource.",
                },
            )
        return user

    return dependency


__all__ = ["get_current_user", "require_roles"]
