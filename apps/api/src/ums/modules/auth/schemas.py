"""Authentication schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from ums.modules.users.models import UserRole

PASSWORD_MIN_LENGTH = 6
CODE_PATTERN = r"^\d{6}$"


# ============================================
# Requests
# ============================================


class LoginRequest(BaseModel):
    """Login with either ``identifier`` (email or username) or ``email``."""

    identifier: str | None = Field(None, max_length=254)
    email: str | None = Field(None, max_length=254)
    password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def require_identifier(self) -> "LoginRequest":
        if not (self.identifier or self.email):
            raise ValueError("Email or username is required.")
        return self

    @property
    def login_id(self) -> str:
        return (self.identifier or self.email or "").strip().lower()


class PasswordChangeCodeRequest(BaseModel):
    """Request body for POST /auth/change-password/request-code."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)
    confirm_password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)


class PasswordChangeRequest(PasswordChangeCodeRequest):
    """Request body for PATCH /auth/change-password."""

    verification_code: str = Field(..., pattern=CODE_PATTERN)


class EmailOtpRequest(BaseModel):
    email: EmailStr


class EmailOtpVerify(BaseModel):
    email: EmailStr
    otp: str = Field(..., pattern=CODE_PATTERN)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ForgotPasswordReset(BaseModel):
    email: EmailStr
    otp: str = Field(..., pattern=CODE_PATTERN)
    new_password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)
    confirm_password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)


# ============================================
# Responses
# ============================================


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    username: str | None = None
    email: str
    role: UserRole
    avatar: str | None = None
    is_email_verified: bool
    email_verified_at: datetime | None = None


class StudentProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    roll_number: str
    department: str
    year: int
    semester: int
    section: str
    phone: str
    address: str
    guardian_name: str


class LoginData(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
    profile: StudentProfileResponse | None = None


class LoginResponse(BaseModel):
    success: bool = True
    message: str = "Login successful."
    data: LoginData


class MeData(BaseModel):
    user: UserResponse
    profile: StudentProfileResponse | None = None


class MeResponse(BaseModel):
    success: bool = True
    data: MeData


class CodeSentData(BaseModel):
    """Where a one-time code went. ``debug_code`` is only set outside production."""

    destination: str
    expires_in_minutes: int
    delivery: Literal["external", "fallback"]
    debug_code: str | None = None


class CodeSentResponse(BaseModel):
    success: bool = True
    message: str
    data: CodeSentData | None = None


class EmailVerifiedData(BaseModel):
    user: UserResponse


class EmailVerifiedResponse(BaseModel):
    success: bool = True
    message: str = "Email verified successfully."
    data: EmailVerifiedData


class MessageResponse(BaseModel):
    success: bool = True
    message: str
