"""Authentication module: login and one-time-code workflows."""

from ums.modules.auth.router import router
from ums.modules.auth.schemas import LoginRequest, LoginResponse
from ums.modules.auth.service import CodePolicy, CodeSent

__all__ = ["router", "LoginRequest", "LoginResponse", "CodePolicy", "CodeSent"]
