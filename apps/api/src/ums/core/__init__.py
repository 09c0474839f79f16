"""
Core module - Configuration, database, security, and utilities.
"""

from ums.core.config import get_settings, settings
from ums.core.database import Base, close_db, get_db, init_db
from ums.core.exceptions import ConflictError, NotFoundError, ServiceError
from ums.core.redis import close_redis, get_redis, init_redis
from ums.core.security import (
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Errors
    "ServiceError",
    "NotFoundError",
    "ConflictError",
    # Redis
    "get_redis",
    "init_redis",
    "close_redis",
    # Security
    "hash_password",
    "verify_password",
    "create_access_token",
    "decode_token",
]
