"""
Users module - User directory and credentials.
"""

from ums.modules.users.models import User, UserRole
from ums.modules.users.repository import UserRepository, normalize_email

__all__ = ["User", "UserRole", "UserRepository", "normalize_email"]
