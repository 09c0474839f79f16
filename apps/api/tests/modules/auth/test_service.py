"""
Unit tests for the auth service layer.

These tests cover:
- Email masking and code policy
- Login by email or username
- Password change request and confirmation
- Email verification request and confirmation
- Forgot password request and reset
- Delivery failures and debug code exposure
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from ums.core.config import Settings
from ums.core.email import DeliveryError, DeliveryResult
from ums.modules.auth.service import (
    AccountNotFoundError,
    CodeCooldownError,
    CodeDeliveryError,
    CodeExhaustedError,
    CodeExpiredError,
    CodeNotRequestedError,
    CodePolicy,
    EmailInUseError,
    EmailMismatchError,
    IncorrectPasswordError,
    InvalidCodeError,
    InvalidCredentialsError,
    NotAuthorizedError,
    PasswordRuleError,
    PayloadChangedError,
    confirm_email_verification,
    confirm_password_change,
    login,
    mask_email,
    request_email_verification,
    request_password_change,
    request_password_reset,
    reset_password,
)
from ums.modules.challenges import ChallengePurpose
from ums.modules.challenges.models import NotRequested

REPO = "ums.modules.auth.service.UserRepository"


def _sent_code(notifier) -> str:
    """The code handed to the notifier on its most recent call."""
    return notifier.deliver.await_args.args[1]


def _other(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


class TestMaskEmail:
    def test_keeps_two_characters(self):
        assert mask_email("ravi@uni.edu") == "ra**@uni.edu"

    def test_long_local_part(self):
        assert mask_email("jonathan@example.com") == "jo******@example.com"

    def test_short_local_part_padded(self):
        assert mask_email("a@uni.edu") == "a**@uni.edu"

    def test_not_an_address(self):
        assert mask_email("nobody") == "nobody"


class TestCodePolicy:
    def test_from_settings(self):
        policy = CodePolicy.from_settings(
            Settings(otp_ttl_minutes=15, otp_cooldown_seconds=30, otp_max_attempts=3)
        )

        assert policy.ttl == timedelta(minutes=15)
        assert policy.cooldown == timedelta(seconds=30)
        assert policy.max_attempts == 3
        assert policy.ttl_minutes == 15

    def test_debug_codes_hidden_in_production(self):
        assert not CodePolicy.from_settings(Settings(python_env="production")).expose_debug_codes
        assert CodePolicy.from_settings(Settings(python_env="development")).expose_debug_codes


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_success(self, mock_db, sample_user):
        with patch(f"{REPO}.get_by_identifier", new_callable=AsyncMock) as get_user:
            get_user.return_value = sample_user

            token, user = await login(mock_db, "ravi", "secret123")

        assert token
        assert user is sample_user
        get_user.assert_awaited_once_with(mock_db, "ravi")

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, mock_db, sample_user):
        with patch(f"{REPO}.get_by_identifier", new_callable=AsyncMock) as get_user:
            get_user.return_value = sample_user

            with pytest.raises(InvalidCredentialsError):
                await login(mock_db, "ravi", "wrong-pass")

    @pytest.mark.asyncio
    async def test_login_unknown_account(self, mock_db):
        with patch(f"{REPO}.get_by_identifier", new_callable=AsyncMock) as get_user:
            get_user.return_value = None

            with pytest.raises(InvalidCredentialsError):
                await login(mock_db, "ghost", "secret123")

    @pytest.mark.asyncio
    async def test_login_inactive_account(self, mock_db, sample_user):
        sample_user.is_active = False
        with patch(f"{REPO}.get_by_identifier", new_callable=AsyncMock) as get_user:
            get_user.return_value = sample_user

            with pytest.raises(InvalidCredentialsError):
                await login(mock_db, "ravi", "secret123")


class TestRequestPasswordChange:
    async def _request(self, store, notifier, user, policy, **overrides):
        values = {
            "current_password": "secret123",
            "new_password": "n3wpass",
            "confirm_password": "n3wpass",
        }
        values.update(overrides)
        return await request_password_change(store, notifier, user, policy=policy, **values)

    @pytest.mark.asyncio
    async def test_sends_code_to_account_email(self, store, mock_notifier, sample_user, policy):
        sent = await self._request(store, mock_notifier, sample_user, policy)

        assert sent.destination == "ra**@uni.edu"
        assert sent.expires_in_minutes == 10
        assert sent.delivery == "fallback"
        assert sent.debug_code == _sent_code(mock_notifier)
        assert mock_notifier.deliver.await_args.args[0] == "ravi@uni.edu"

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, store, mock_notifier, sample_user, policy):
        with pytest.raises(IncorrectPasswordError):
            await self._request(
                store, mock_notifier, sample_user, policy, current_password="nope"
            )

        mock_notifier.deliver.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_password_same_as_current(self, store, mock_notifier, sample_user, policy):
        with pytest.raises(PasswordRuleError):
            await self._request(
                store,
                mock_notifier,
                sample_user,
                policy,
                new_password="secret123",
                confirm_password="secret123",
            )

    @pytest.mark.asyncio
    async def test_confirm_mismatch(self, store, mock_notifier, sample_user, policy):
        with pytest.raises(PasswordRuleError):
            await self._request(
                store, mock_notifier, sample_user, policy, confirm_password="different"
            )

    @pytest.mark.asyncio
    async def test_inactive_user_rejected(self, store, mock_notifier, sample_user, policy):
        sample_user.is_active = False

        with pytest.raises(NotAuthorizedError):
            await self._request(store, mock_notifier, sample_user, policy)

    @pytest.mark.asyncio
    async def test_second_request_hits_cooldown(
        self, store, clock, mock_notifier, sample_user, policy
    ):
        await self._request(store, mock_notifier, sample_user, policy)
        clock.advance(seconds=15)

        with pytest.raises(CodeCooldownError) as exc_info:
            await self._request(store, mock_notifier, sample_user, policy)

        assert exc_info.value.seconds_remaining == 45
        assert exc_info.value.status_code == 429
        assert exc_info.value.headers == {"Retry-After": "45"}

    @pytest.mark.asyncio
    async def test_delivery_failure_cancels_challenge(
        self, store, mock_notifier, sample_user, policy
    ):
        mock_notifier.deliver.side_effect = DeliveryError("provider down")

        with pytest.raises(CodeDeliveryError):
            await self._request(store, mock_notifier, sample_user, policy)

        outcome = await store.verify(
            str(sample_user.id), ChallengePurpose.PASSWORD_CHANGE, "000000"
        )
        assert outcome == NotRequested()

        # No cooldown is left behind by the failed attempt
        mock_notifier.deliver.side_effect = None
        sent = await self._request(store, mock_notifier, sample_user, policy)
        assert sent.debug_code is not None

    @pytest.mark.asyncio
    async def test_debug_code_hidden_when_disabled(self, store, mock_notifier, sample_user):
        policy = CodePolicy(
            ttl=timedelta(minutes=10),
            cooldown=timedelta(seconds=60),
            max_attempts=5,
            expose_debug_codes=False,
        )

        sent = await self._request(store, mock_notifier, sample_user, policy)

        assert sent.debug_code is None

    @pytest.mark.asyncio
    async def test_debug_code_hidden_for_external_delivery(
        self, store, mock_notifier, sample_user, policy
    ):
        mock_notifier.deliver.return_value = DeliveryResult(channel="external")

        sent = await self._request(store, mock_notifier, sample_user, policy)

        assert sent.delivery == "external"
        assert sent.debug_code is None


class TestConfirmPasswordChange:
    async def _setup(self, store, notifier, user, policy):
        await request_password_change(
            store,
            notifier,
            user,
            current_password="secret123",
            new_password="n3wpass",
            confirm_password="n3wpass",
            policy=policy,
        )
        return _sent_code(notifier)

    async def _confirm(self, db, store, user, code, new_password="n3wpass"):
        await confirm_password_change(
            db,
            store,
            user,
            current_password="secret123",
            new_password=new_password,
            confirm_password=new_password,
            verification_code=code,
        )

    @pytest.mark.asyncio
    async def test_success_sets_password(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        code = await self._setup(store, mock_notifier, sample_user, policy)

        with patch(f"{REPO}.set_password", new_callable=AsyncMock) as set_password:
            await self._confirm(mock_db, store, sample_user, code)

        set_password.assert_awaited_once_with(mock_db, sample_user, "n3wpass")
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, mock_db, store, mock_notifier, sample_user, policy):
        code = await self._setup(store, mock_notifier, sample_user, policy)

        with patch(f"{REPO}.set_password", new_callable=AsyncMock):
            await self._confirm(mock_db, store, sample_user, code)
            with pytest.raises(CodeNotRequestedError):
                await self._confirm(mock_db, store, sample_user, code)

    @pytest.mark.asyncio
    async def test_changed_new_password(self, mock_db, store, mock_notifier, sample_user, policy):
        code = await self._setup(store, mock_notifier, sample_user, policy)

        with pytest.raises(PayloadChangedError):
            await self._confirm(mock_db, store, sample_user, code, new_password="other99")

        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_wrong_code_reports_attempts(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        code = await self._setup(store, mock_notifier, sample_user, policy)

        with pytest.raises(InvalidCodeError) as exc_info:
            await self._confirm(mock_db, store, sample_user, _other(code))

        assert exc_info.value.attempts_remaining == 4
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_exhausted_after_max_attempts(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        code = await self._setup(store, mock_notifier, sample_user, policy)

        for _ in range(4):
            with pytest.raises(InvalidCodeError):
                await self._confirm(mock_db, store, sample_user, _other(code))
        with pytest.raises(CodeExhaustedError):
            await self._confirm(mock_db, store, sample_user, _other(code))

    @pytest.mark.asyncio
    async def test_expired_code(self, mock_db, store, clock, mock_notifier, sample_user, policy):
        code = await self._setup(store, mock_notifier, sample_user, policy)
        clock.advance(minutes=11)

        with pytest.raises(CodeExpiredError):
            await self._confirm(mock_db, store, sample_user, code)

    @pytest.mark.asyncio
    async def test_success_cancels_pending_reset(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        code = await self._setup(store, mock_notifier, sample_user, policy)
        await store.issue(
            sample_user.email,
            ChallengePurpose.FORGOT_PASSWORD,
            ttl=policy.ttl,
            cooldown=policy.cooldown,
            max_attempts=policy.max_attempts,
        )

        with patch(f"{REPO}.set_password", new_callable=AsyncMock):
            await self._confirm(mock_db, store, sample_user, code)

        outcome = await store.verify(sample_user.email, ChallengePurpose.FORGOT_PASSWORD, "000000")
        assert outcome == NotRequested()


class TestEmailVerification:
    @pytest.mark.asyncio
    async def test_request_sends_to_new_address(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        with patch(f"{REPO}.email_in_use_by_other", new_callable=AsyncMock) as in_use:
            in_use.return_value = False

            sent = await request_email_verification(
                mock_db, store, mock_notifier, sample_user, email=" New@Uni.Edu ", policy=policy
            )

        assert sent.destination == "ne**@uni.edu"
        assert mock_notifier.deliver.await_args.args[0] == "new@uni.edu"

    @pytest.mark.asyncio
    async def test_request_rejects_taken_address(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        with patch(f"{REPO}.email_in_use_by_other", new_callable=AsyncMock) as in_use:
            in_use.return_value = True

            with pytest.raises(EmailInUseError):
                await request_email_verification(
                    mock_db,
                    store,
                    mock_notifier,
                    sample_user,
                    email="taken@uni.edu",
                    policy=policy,
                )

        mock_notifier.deliver.assert_not_called()

    @pytest.mark.asyncio
    async def test_confirm_marks_verified(
        self, mock_db, store, clock, mock_notifier, sample_user, policy
    ):
        with (
            patch(f"{REPO}.email_in_use_by_other", new_callable=AsyncMock) as in_use,
            patch(f"{REPO}.set_verified_email", new_callable=AsyncMock) as set_verified,
        ):
            in_use.return_value = False
            await request_email_verification(
                mock_db, store, mock_notifier, sample_user, email="new@uni.edu", policy=policy
            )

            await confirm_email_verification(
                mock_db, store, sample_user, email="NEW@uni.edu", otp=_sent_code(mock_notifier)
            )

        set_verified.assert_awaited_once_with(
            mock_db, sample_user, "new@uni.edu", verified_at=clock.now
        )
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_confirm_with_other_address(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        with patch(f"{REPO}.email_in_use_by_other", new_callable=AsyncMock) as in_use:
            in_use.return_value = False
            await request_email_verification(
                mock_db, store, mock_notifier, sample_user, email="new@uni.edu", policy=policy
            )

            with pytest.raises(EmailMismatchError):
                await confirm_email_verification(
                    mock_db,
                    store,
                    sample_user,
                    email="other@uni.edu",
                    otp=_sent_code(mock_notifier),
                )

    @pytest.mark.asyncio
    async def test_confirm_conflict_cancels_challenge(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        with patch(f"{REPO}.email_in_use_by_other", new_callable=AsyncMock) as in_use:
            in_use.return_value = False
            await request_email_verification(
                mock_db, store, mock_notifier, sample_user, email="new@uni.edu", policy=policy
            )
            code = _sent_code(mock_notifier)

            in_use.return_value = True
            with pytest.raises(EmailInUseError):
                await confirm_email_verification(
                    mock_db, store, sample_user, email="new@uni.edu", otp=code
                )

        outcome = await store.verify(
            str(sample_user.id), ChallengePurpose.EMAIL_VERIFICATION, code
        )
        assert outcome == NotRequested()

    @pytest.mark.asyncio
    async def test_wrong_code_keeps_challenge_when_address_is_taken(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        with (
            patch(f"{REPO}.email_in_use_by_other", new_callable=AsyncMock) as in_use,
            patch(f"{REPO}.set_verified_email", new_callable=AsyncMock) as set_verified,
        ):
            in_use.return_value = False
            await request_email_verification(
                mock_db, store, mock_notifier, sample_user, email="new@uni.edu", policy=policy
            )
            code = _sent_code(mock_notifier)

            in_use.return_value = True
            with pytest.raises(InvalidCodeError):
                await confirm_email_verification(
                    mock_db, store, sample_user, email="new@uni.edu", otp=_other(code)
                )
            with pytest.raises(EmailMismatchError):
                await confirm_email_verification(
                    mock_db, store, sample_user, email="taken@uni.edu", otp=code
                )
            in_use.assert_not_awaited()

            in_use.return_value = False
            await confirm_email_verification(
                mock_db, store, sample_user, email="new@uni.edu", otp=code
            )

        set_verified.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unique_index_violation_is_conflict(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        mock_db.commit.side_effect = IntegrityError(
            "UPDATE users", {}, Exception("UNIQUE constraint failed: users.email")
        )
        with (
            patch(f"{REPO}.email_in_use_by_other", new_callable=AsyncMock) as in_use,
            patch(f"{REPO}.set_verified_email", new_callable=AsyncMock),
        ):
            in_use.return_value = False
            await request_email_verification(
                mock_db, store, mock_notifier, sample_user, email="new@uni.edu", policy=policy
            )

            with pytest.raises(EmailInUseError):
                await confirm_email_verification(
                    mock_db, store, sample_user, email="new@uni.edu", otp=_sent_code(mock_notifier)
                )

        mock_db.rollback.assert_awaited_once()


class TestForgotPassword:
    @pytest.mark.asyncio
    async def test_unknown_email_sends_nothing(self, mock_db, store, mock_notifier, policy):
        with patch(f"{REPO}.get_active_by_email", new_callable=AsyncMock) as get_user:
            get_user.return_value = None

            sent = await request_password_reset(
                mock_db, store, mock_notifier, email="ghost@uni.edu", policy=policy
            )

        assert sent is None
        mock_notifier.deliver.assert_not_called()

    @pytest.mark.asyncio
    async def test_known_email_gets_code(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        with patch(f"{REPO}.get_active_by_email", new_callable=AsyncMock) as get_user:
            get_user.return_value = sample_user

            sent = await request_password_reset(
                mock_db, store, mock_notifier, email="RAVI@uni.edu", policy=policy
            )

        assert sent is not None
        assert sent.debug_code == _sent_code(mock_notifier)
        get_user.assert_awaited_once_with(mock_db, "ravi@uni.edu")

    async def _issue_reset(self, mock_db, store, notifier, user, policy) -> str:
        with patch(f"{REPO}.get_active_by_email", new_callable=AsyncMock) as get_user:
            get_user.return_value = user
            await request_password_reset(mock_db, store, notifier, email=user.email, policy=policy)
        return _sent_code(notifier)

    @pytest.mark.asyncio
    async def test_reset_success(self, mock_db, store, mock_notifier, sample_user, policy):
        code = await self._issue_reset(mock_db, store, mock_notifier, sample_user, policy)

        with (
            patch(f"{REPO}.get_active_by_email", new_callable=AsyncMock) as get_user,
            patch(f"{REPO}.set_password", new_callable=AsyncMock) as set_password,
        ):
            get_user.return_value = sample_user
            await reset_password(
                mock_db,
                store,
                email="ravi@uni.edu",
                otp=code,
                new_password="fresh99",
                confirm_password="fresh99",
            )

        set_password.assert_awaited_once_with(mock_db, sample_user, "fresh99")
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_confirm_mismatch_keeps_code(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        code = await self._issue_reset(mock_db, store, mock_notifier, sample_user, policy)

        with pytest.raises(PasswordRuleError):
            await reset_password(
                mock_db,
                store,
                email="ravi@uni.edu",
                otp=code,
                new_password="fresh99",
                confirm_password="fresh98",
            )

        challenge = await store.backend.get("forgot_password:ravi@uni.edu")
        assert challenge.attempts_remaining == policy.max_attempts

    @pytest.mark.asyncio
    async def test_same_password_rejected_after_valid_code(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        code = await self._issue_reset(mock_db, store, mock_notifier, sample_user, policy)

        with patch(f"{REPO}.get_active_by_email", new_callable=AsyncMock) as get_user:
            get_user.return_value = sample_user
            with pytest.raises(PasswordRuleError):
                await reset_password(
                    mock_db,
                    store,
                    email="ravi@uni.edu",
                    otp=code,
                    new_password="secret123",
                    confirm_password="secret123",
                )

        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_account_removed_before_reset(
        self, mock_db, store, mock_notifier, sample_user, policy
    ):
        code = await self._issue_reset(mock_db, store, mock_notifier, sample_user, policy)

        with patch(f"{REPO}.get_active_by_email", new_callable=AsyncMock) as get_user:
            get_user.return_value = None
            with pytest.raises(AccountNotFoundError):
                await reset_password(
                    mock_db,
                    store,
                    email="ravi@uni.edu",
                    otp=code,
                    new_password="fresh99",
                    confirm_password="fresh99",
                )

    @pytest.mark.asyncio
    async def test_reset_without_request(self, mock_db, store):
        with pytest.raises(CodeNotRequestedError):
            await reset_password(
                mock_db,
                store,
                email="ravi@uni.edu",
                otp="123456",
                new_password="fresh99",
                confirm_password="fresh99",
            )
