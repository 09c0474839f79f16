"""
Authentication Service Layer

Login plus the three one-time-code workflows built on ``ChallengeStore``:

1. Password change (authenticated):
   - request: current password checks out, new differs from current and
     matches confirm; a code bound to the new password is emailed to the
     account address
   - confirm: preconditions re-checked, then the code must verify against
     the same new password before the credential is replaced

2. Email verification (authenticated):
   - request: the address is not used by another account; a code bound to
     that address is emailed to it
   - confirm: the code is verified first, then uniqueness is re-checked
     (including the unique index at commit); on success the address becomes
     the account email and is marked verified

3. Forgot password (unauthenticated):
   - request: identical response whether or not an active account exists
   - confirm: code verified first, then the account is re-checked and the
     credential replaced

Security considerations:
- Codes are delivered, never logged, except by the fallback notifier which
  exists for local development
- ``debug_code`` is returned only when the fallback notifier was used and
  the environment is not production
- A failed delivery cancels the challenge it was issued for
- Password-change and email-verification challenges are keyed by user id,
  forgot-password challenges by normalized email
"""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta

from fastapi import status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ums.core.config import Settings, settings
from ums.core.email import DeliveryError, EmailNotifier
from ums.core.exceptions import ConflictError, NotFoundError, ServiceError
from ums.core.security import create_access_token
from ums.modules.academics.models import StudentProfile
from ums.modules.academics.repository import get_student_profile
from ums.modules.challenges import ChallengePurpose, ChallengeStore
from ums.modules.challenges.models import (
    EmailMismatch,
    Exhausted,
    Expired,
    Invalid,
    NotRequested,
    PayloadChanged,
    RateLimited,
    Verified,
    VerifyOutcome,
)
from ums.modules.users import User, UserRepository, UserRole, normalize_email

logger = logging.getLogger(__name__)

PASSWORD_CHANGE_LABEL = "password change verification"
EMAIL_VERIFICATION_LABEL = "email verification"
FORGOT_PASSWORD_LABEL = "password reset"

FORGOT_PASSWORD_ACK = "If an account exists for this email, OTP will be sent."


# ============================================
# Errors
# ============================================


class NotAuthorizedError(ServiceError):
    def __init__(self, message: str = "User is not authorized."):
        super().__init__(message=message, error_code="NOT_AUTHORIZED", status_code=401)


class InvalidCredentialsError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Invalid username/email or password.",
            error_code="INVALID_CREDENTIALS",
            status_code=401,
        )


class IncorrectPasswordError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Current password is incorrect.",
            error_code="INCORRECT_PASSWORD",
            status_code=401,
        )


class PasswordRuleError(ServiceError):
    def __init__(self, message: str):
        super().__init__(message=message, error_code="PASSWORD_RULE_VIOLATION", status_code=400)


class EmailInUseError(ConflictError):
    def __init__(self):
        super().__init__(
            "This email is already used by another account.",
            error_code="EMAIL_IN_USE",
        )


class AccountNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Account not found for this email.", error_code="ACCOUNT_NOT_FOUND")


class CodeCooldownError(ServiceError):
    def __init__(self, seconds_remaining: int):
        self.seconds_remaining = seconds_remaining
        super().__init__(
            message=f"Please wait {seconds_remaining}s before requesting a new code.",
            error_code="CODE_COOLDOWN",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(seconds_remaining)},
        )


class CodeNotRequestedError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Request a verification code first.",
            error_code="CODE_NOT_REQUESTED",
            status_code=400,
        )


class CodeExpiredError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Verification code expired. Request a new one.",
            error_code="CODE_EXPIRED",
            status_code=400,
        )


class PayloadChangedError(ServiceError):
    def __init__(self):
        super().__init__(
            message="New password changed after verification request. Request code again.",
            error_code="PAYLOAD_CHANGED",
            status_code=400,
        )


class EmailMismatchError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Email does not match latest OTP request.",
            error_code="EMAIL_MISMATCH",
            status_code=400,
        )


class InvalidCodeError(ServiceError):
    def __init__(self, attempts_remaining: int):
        self.attempts_remaining = attempts_remaining
        super().__init__(
            message=f"Invalid verification code. Attempts left: {attempts_remaining}",
            error_code="INVALID_CODE",
            status_code=401,
        )


class CodeExhaustedError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Verification code invalid. Request a new code.",
            error_code="CODE_EXHAUSTED",
            status_code=401,
        )


class CodeDeliveryError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Could not send verification code. Please try again.",
            error_code="CODE_DELIVERY_FAILED",
            status_code=500,
        )


# ============================================
# Policy & helpers
# ============================================


@dataclass(frozen=True)
class CodePolicy:
    """Issuance policy shared by the three workflows."""

    ttl: timedelta
    cooldown: timedelta
    max_attempts: int
    expose_debug_codes: bool

    @classmethod
    def from_settings(cls, config: Settings) -> "CodePolicy":
        return cls(
            ttl=timedelta(minutes=config.otp_ttl_minutes),
            cooldown=timedelta(seconds=config.otp_cooldown_seconds),
            max_attempts=config.otp_max_attempts,
            expose_debug_codes=not config.is_production,
        )

    @property
    def ttl_minutes(self) -> int:
        return math.ceil(self.ttl.total_seconds() / 60)


@dataclass(frozen=True)
class CodeSent:
    destination: str
    expires_in_minutes: int
    delivery: str
    debug_code: str | None = None


def mask_email(email: str) -> str:
    """Keep the first two characters of the local part: ``jo****@example.com``."""
    local, _, domain = email.strip().partition("@")
    if not local or not domain:
        return email
    return f"{local[:2]}{'*' * max(len(local) - 2, 2)}@{domain}"


def _raise_for_outcome(outcome: VerifyOutcome) -> None:
    """Translate a non-success verify outcome into a service error."""
    if isinstance(outcome, Verified):
        return
    if isinstance(outcome, NotRequested):
        raise CodeNotRequestedError()
    if isinstance(outcome, Expired):
        raise CodeExpiredError()
    if isinstance(outcome, PayloadChanged):
        raise PayloadChangedError()
    if isinstance(outcome, EmailMismatch):
        raise EmailMismatchError()
    if isinstance(outcome, Invalid):
        raise InvalidCodeError(outcome.attempts_remaining)
    if isinstance(outcome, Exhausted):
        raise CodeExhaustedError()
    raise TypeError(f"Unexpected verify outcome: {outcome!r}")


async def _issue_and_deliver(
    store: ChallengeStore,
    notifier: EmailNotifier,
    policy: CodePolicy,
    *,
    subject_key: str,
    purpose: ChallengePurpose,
    destination: str,
    name: str,
    label: str,
    aux_payload: str | None = None,
    pending_email: str | None = None,
) -> CodeSent:
    outcome = await store.issue(
        subject_key,
        purpose,
        ttl=policy.ttl,
        cooldown=policy.cooldown,
        max_attempts=policy.max_attempts,
        aux_payload=aux_payload,
        pending_email=pending_email,
    )
    if isinstance(outcome, RateLimited):
        raise CodeCooldownError(outcome.seconds_remaining)

    try:
        result = await notifier.deliver(
            destination, outcome.code, label, policy.ttl_minutes, name=name
        )
    except DeliveryError as e:
        await store.cancel(subject_key, purpose)
        logger.error(f"Could not deliver {purpose.value} code: {e}")
        raise CodeDeliveryError() from e

    debug_code = None
    if result.channel == "fallback" and policy.expose_debug_codes:
        debug_code = outcome.code

    return CodeSent(
        destination=mask_email(destination),
        expires_in_minutes=policy.ttl_minutes,
        delivery=result.channel,
        debug_code=debug_code,
    )


def _require_active(user: User | None) -> User:
    if user is None or not user.is_active:
        raise NotAuthorizedError()
    return user


def _check_new_password(
    user: User, current_password: str, new_password: str, confirm_password: str
) -> None:
    if not UserRepository.check_password(user, current_password):
        raise IncorrectPasswordError()
    if current_password == new_password:
        raise PasswordRuleError("New password must be different from current password.")
    if new_password != confirm_password:
        raise PasswordRuleError("confirm_password must match new_password.")


# ============================================
# Login
# ============================================


async def get_role_profile(db: AsyncSession, user: User) -> StudentProfile | None:
    if user.role == UserRole.STUDENT:
        return await get_student_profile(db, user.id)
    return None


async def login(db: AsyncSession, identifier: str, password: str) -> tuple[str, User]:
    """
    Authenticate by email or username.

    Returns:
        (access token, user)

    Raises:
        InvalidCredentialsError: Unknown, inactive or wrong password
    """
    user = await UserRepository.get_by_identifier(db, identifier)
    if user is None or not user.is_active:
        logger.warning("Login attempt for unknown or inactive account")
        raise InvalidCredentialsError()

    if not UserRepository.check_password(user, password):
        logger.warning(f"Invalid password for user {user.id}")
        raise InvalidCredentialsError()

    token = create_access_token(subject=str(user.id), additional_claims={"role": user.role.value})
    logger.info(f"User logged in: {user.id} (role: {user.role.value})")
    return token, user


# ============================================
# Password change
# ============================================


async def request_password_change(
    store: ChallengeStore,
    notifier: EmailNotifier,
    user: User,
    *,
    current_password: str,
    new_password: str,
    confirm_password: str,
    policy: CodePolicy | None = None,
) -> CodeSent:
    policy = policy or CodePolicy.from_settings(settings)
    user = _require_active(user)
    _check_new_password(user, current_password, new_password, confirm_password)

    sent = await _issue_and_deliver(
        store,
        notifier,
        policy,
        subject_key=str(user.id),
        purpose=ChallengePurpose.PASSWORD_CHANGE,
        destination=user.email,
        name=user.name,
        label=PASSWORD_CHANGE_LABEL,
        aux_payload=new_password,
    )
    logger.info(f"Password change code sent for user {user.id}")
    return sent


async def confirm_password_change(
    db: AsyncSession,
    store: ChallengeStore,
    user: User,
    *,
    current_password: str,
    new_password: str,
    confirm_password: str,
    verification_code: str,
) -> None:
    user = _require_active(user)
    _check_new_password(user, current_password, new_password, confirm_password)

    outcome = await store.verify(
        str(user.id),
        ChallengePurpose.PASSWORD_CHANGE,
        verification_code,
        aux_payload=new_password,
    )
    _raise_for_outcome(outcome)

    await UserRepository.set_password(db, user, new_password)
    await db.commit()
    await store.cancel(user.email, ChallengePurpose.FORGOT_PASSWORD)
    logger.info(f"Password changed for user {user.id}")


# ============================================
# Email verification
# ============================================


async def request_email_verification(
    db: AsyncSession,
    store: ChallengeStore,
    notifier: EmailNotifier,
    user: User,
    *,
    email: str,
    policy: CodePolicy | None = None,
) -> CodeSent:
    policy = policy or CodePolicy.from_settings(settings)
    user = _require_active(user)
    target = normalize_email(email)

    if await UserRepository.email_in_use_by_other(db, target, user.id):
        raise EmailInUseError()

    sent = await _issue_and_deliver(
        store,
        notifier,
        policy,
        subject_key=str(user.id),
        purpose=ChallengePurpose.EMAIL_VERIFICATION,
        destination=target,
        name=user.name,
        label=EMAIL_VERIFICATION_LABEL,
        pending_email=target,
    )
    logger.info(f"Email verification code sent for user {user.id}")
    return sent


async def confirm_email_verification(
    db: AsyncSession,
    store: ChallengeStore,
    user: User,
    *,
    email: str,
    otp: str,
) -> User:
    """
    Make a verified address the account email.

    The code is checked before uniqueness so a wrong code or a different
    address cannot cancel the pending challenge. Another account claiming
    the address after the re-check surfaces as an IntegrityError on the
    unique email index and is reported as the same conflict.
    """
    user = _require_active(user)
    target = normalize_email(email)

    outcome = await store.verify(
        str(user.id),
        ChallengePurpose.EMAIL_VERIFICATION,
        otp,
        pending_email=target,
    )
    _raise_for_outcome(outcome)

    if await UserRepository.email_in_use_by_other(db, target, user.id):
        raise EmailInUseError()

    user_id, previous_email = user.id, user.email
    try:
        await UserRepository.set_verified_email(db, user, target, verified_at=store.clock())
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Email taken during verification for user {user_id}")
        raise EmailInUseError() from e
    await store.cancel(previous_email, ChallengePurpose.FORGOT_PASSWORD)
    logger.info(f"Email verified for user {user.id}")
    return user


# ============================================
# Forgot password
# ============================================


async def request_password_reset(
    db: AsyncSession,
    store: ChallengeStore,
    notifier: EmailNotifier,
    *,
    email: str,
    policy: CodePolicy | None = None,
) -> CodeSent | None:
    """
    Send a reset code if an active account owns ``email``.

    Returns None when no account exists; callers must respond the same way
    in both cases.
    """
    policy = policy or CodePolicy.from_settings(settings)
    target = normalize_email(email)

    user = await UserRepository.get_active_by_email(db, target)
    if user is None:
        logger.info("Password reset requested for an address with no active account")
        return None

    sent = await _issue_and_deliver(
        store,
        notifier,
        policy,
        subject_key=target,
        purpose=ChallengePurpose.FORGOT_PASSWORD,
        destination=target,
        name=user.name,
        label=FORGOT_PASSWORD_LABEL,
    )
    logger.info(f"Password reset code sent for user {user.id}")
    return sent


async def reset_password(
    db: AsyncSession,
    store: ChallengeStore,
    *,
    email: str,
    otp: str,
    new_password: str,
    confirm_password: str,
) -> None:
    """
    Replace a forgotten password.

    The code is verified (and consumed) before the account is looked at, so
    the same-password rule cannot be checked without a valid code.
    """
    target = normalize_email(email)
    if new_password != confirm_password:
        raise PasswordRuleError("confirm_password must match new_password.")

    outcome = await store.verify(target, ChallengePurpose.FORGOT_PASSWORD, otp)
    _raise_for_outcome(outcome)

    user = await UserRepository.get_active_by_email(db, target)
    if user is None:
        await store.cancel(target, ChallengePurpose.FORGOT_PASSWORD)
        raise AccountNotFoundError()

    if UserRepository.check_password(user, new_password):
        raise PasswordRuleError("New password must be different from current password.")

    await UserRepository.set_password(db, user, new_password)
    await db.commit()
    await store.cancel(target, ChallengePurpose.FORGOT_PASSWORD)
    logger.info(f"Password reset for user {user.id}")
