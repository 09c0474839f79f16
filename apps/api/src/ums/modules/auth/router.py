"""
Authentication Router

Endpoints:
- POST /auth/login - Exchange email/username and password for an access token
- GET /auth/me - Current user and role profile
- POST /auth/change-password/request-code - Email a password change code
- PATCH /auth/change-password - Change password with the emailed code
- POST /auth/email/request-otp - Email a verification code to a new address
- POST /auth/email/verify-otp - Confirm the new address
- POST /auth/forgot-password/request-otp - Email a reset code (rate limited)
- POST /auth/forgot-password/reset - Reset password with the emailed code
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ums.core.auth import get_current_user
from ums.core.config import settings
from ums.core.database import get_db
from ums.core.email import EmailNotifier, get_notifier
from ums.core.rate_limit import rate_limit
from ums.modules.auth import service
from ums.modules.auth.schemas import (
    CodeSentData,
    CodeSentResponse,
    EmailOtpRequest,
    EmailOtpVerify,
    EmailVerifiedData,
    EmailVerifiedResponse,
    ForgotPasswordRequest,
    ForgotPasswordReset,
    LoginData,
    LoginRequest,
    LoginResponse,
    MeData,
    MeResponse,
    MessageResponse,
    PasswordChangeCodeRequest,
    PasswordChangeRequest,
    StudentProfileResponse,
    UserResponse,
)
from ums.modules.challenges import ChallengeStore, get_challenge_store
from ums.modules.users import User

logger = logging.getLogger(__name__)

router = APIRouter()


def _code_sent_data(sent: service.CodeSent) -> CodeSentData:
    return CodeSentData(
        destination=sent.destination,
        expires_in_minutes=sent.expires_in_minutes,
        delivery=sent.delivery,
        debug_code=sent.debug_code,
    )


def _profile_response(profile) -> StudentProfileResponse | None:
    return StudentProfileResponse.model_validate(profile) if profile is not None else None


@router.post("/login", response_model=LoginResponse)
@rate_limit(limit=settings.login_rate_limit, window_seconds=settings.rate_limit_window_seconds)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """
    Authenticate a user and return an access token.

    Raises:
        401: Unknown identifier, inactive account or wrong password
        429: Too many login attempts from this client
    """
    token, user = await service.login(db, credentials.login_id, credentials.password)
    profile = await service.get_role_profile(db, user)
    return LoginResponse(
        data=LoginData(
            access_token=token,
            user=UserResponse.model_validate(user),
            profile=_profile_response(profile),
        )
    )


@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MeResponse:
    profile = await service.get_role_profile(db, user)
    return MeResponse(
        data=MeData(user=UserResponse.model_validate(user), profile=_profile_response(profile))
    )


# ============================================
# Password change
# ============================================


@router.post(
    "/change-password/request-code",
    response_model=CodeSentResponse,
    response_model_exclude_none=True,
)
async def request_password_change_code(
    data: PasswordChangeCodeRequest,
    user: User = Depends(get_current_user),
    store: ChallengeStore = Depends(get_challenge_store),
    notifier: EmailNotifier = Depends(get_notifier),
) -> CodeSentResponse:
    """
    Email a code that authorizes changing to ``new_password``.

    The code is bound to the new password: confirming with a different new
    password is rejected.
    """
    sent = await service.request_password_change(
        store,
        notifier,
        user,
        current_password=data.current_password,
        new_password=data.new_password,
        confirm_password=data.confirm_password,
    )
    return CodeSentResponse(
        message="Verification code sent to your registered email.",
        data=_code_sent_data(sent),
    )


@router.patch("/change-password", response_model=MessageResponse)
async def change_password(
    data: PasswordChangeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
) -> MessageResponse:
    await service.confirm_password_change(
        db,
        store,
        user,
        current_password=data.current_password,
        new_password=data.new_password,
        confirm_password=data.confirm_password,
        verification_code=data.verification_code,
    )
    return MessageResponse(message="Password changed successfully.")


# ============================================
# Email verification
# ============================================


@router.post(
    "/email/request-otp",
    response_model=CodeSentResponse,
    response_model_exclude_none=True,
)
async def request_email_otp(
    data: EmailOtpRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
    notifier: EmailNotifier = Depends(get_notifier),
) -> CodeSentResponse:
    sent = await service.request_email_verification(db, store, notifier, user, email=data.email)
    return CodeSentResponse(
        message="OTP sent to the provided email.",
        data=_code_sent_data(sent),
    )


@router.post("/email/verify-otp", response_model=EmailVerifiedResponse)
async def verify_email_otp(
    data: EmailOtpVerify,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
) -> EmailVerifiedResponse:
    user = await service.confirm_email_verification(db, store, user, email=data.email, otp=data.otp)
    return EmailVerifiedResponse(data=EmailVerifiedData(user=UserResponse.model_validate(user)))


# ============================================
# Forgot password
# ============================================


@router.post(
    "/forgot-password/request-otp",
    response_model=CodeSentResponse,
    response_model_exclude_none=True,
)
@rate_limit(
    limit=settings.forgot_password_rate_limit,
    window_seconds=settings.rate_limit_window_seconds,
)
async def request_forgot_password_otp(
    request: Request,
    data: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
    notifier: EmailNotifier = Depends(get_notifier),
) -> CodeSentResponse:
    """
    Email a password reset code if the address belongs to an active account.

    The response does not reveal whether an account exists. Outside
    production a fallback-delivered code is echoed as ``debug_code``.
    """
    sent = await service.request_password_reset(db, store, notifier, email=data.email)

    response = CodeSentResponse(message=service.FORGOT_PASSWORD_ACK)
    if sent is not None and sent.debug_code is not None:
        response.data = _code_sent_data(sent)
    return response


@router.post("/forgot-password/reset", response_model=MessageResponse)
async def reset_forgot_password(
    data: ForgotPasswordReset,
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
) -> MessageResponse:
    await service.reset_password(
        db,
        store,
        email=data.email,
        otp=data.otp,
        new_password=data.new_password,
        confirm_password=data.confirm_password,
    )
    return MessageResponse(message="Password reset successful. You can now login with new password.")
