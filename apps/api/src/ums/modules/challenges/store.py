"""
Challenge Store

Issues and verifies short-lived numeric codes with cooldown, expiry and a
bounded number of attempts. The store knows nothing about what a code
authorizes; workflows in ``ums.modules.auth.service`` decide that.

Lifecycle of a (subject key, purpose) slot:
- issue: refused while a live challenge is inside its cooldown, otherwise
  replaces whatever challenge the slot held
- verify: NotRequested / Expired / PayloadChanged / EmailMismatch /
  Invalid / Exhausted / Verified
- cancel: unconditional delete

Security considerations:
- Codes are drawn uniformly from 000000-999999 with ``secrets``
- Only HMAC-SHA256(server secret, subject key + code) is stored, and bound
  payloads are kept as HMAC-SHA256 under the same secret
- Comparisons use ``hmac.compare_digest``
- Codes are never logged
"""

import hashlib
import hmac
import logging
import math
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from ums.modules.challenges.backends import ChallengeBackend
from ums.modules.challenges.models import (
    Challenge,
    ChallengePurpose,
    EmailMismatch,
    Exhausted,
    Expired,
    Invalid,
    Issued,
    IssueOutcome,
    NotRequested,
    PayloadChanged,
    RateLimited,
    Verified,
    VerifyOutcome,
)

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
CODE_SPACE = 10**CODE_LENGTH


def utcnow() -> datetime:
    return datetime.now(UTC)


def generate_code() -> str:
    """Uniform random 6-digit code, zero padded."""
    return f"{secrets.randbelow(CODE_SPACE):0{CODE_LENGTH}d}"


def _slot(subject_key: str, purpose: ChallengePurpose) -> str:
    return f"{purpose.value}:{subject_key}"


class ChallengeStore:
    """
    One-time code issuance and verification over a pluggable backend.

    Args:
        backend: Slot storage with per-slot locking
        secret: Server-wide key for code hashes
        clock: Returns the current aware UTC datetime
        code_factory: Produces a new 6-digit code string
        retention: How long an expired challenge is kept so a late verify
            still reports Expired rather than NotRequested
    """

    def __init__(
        self,
        backend: ChallengeBackend,
        secret: str,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] = generate_code,
        retention: timedelta = timedelta(minutes=5),
    ):
        if not secret:
            raise ValueError("Challenge store requires a non-empty secret")
        self.backend = backend
        self._secret = secret.encode("utf-8")
        self.clock = clock
        self.code_factory = code_factory
        self.retention = retention

    def hash_code(self, subject_key: str, code: str) -> str:
        message = f"{subject_key}:{code}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def hash_payload(self, value: str) -> str:
        """Keyed hash of a value bound to a challenge, such as a pending password."""
        message = f"payload:{value}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def issue(
        self,
        subject_key: str,
        purpose: ChallengePurpose,
        ttl: timedelta,
        cooldown: timedelta,
        max_attempts: int,
        aux_payload: str | None = None,
        pending_email: str | None = None,
    ) -> IssueOutcome:
        """
        Issue a new code for ``(subject_key, purpose)``.

        The raw code is returned so the caller can deliver it; the store
        keeps only its hash.

        Returns:
            Issued(code, expires_at), or RateLimited(seconds_remaining) when a
            live challenge was issued less than ``cooldown`` ago

        Raises:
            ValueError: If subject_key is empty or the policy is not positive
        """
        if not subject_key:
            raise ValueError("subject_key must be non-empty")
        if max_attempts < 1 or ttl <= timedelta(0):
            raise ValueError("ttl and max_attempts must be positive")

        slot = _slot(subject_key, purpose)
        async with self.backend.lock(slot):
            now = self.clock()
            existing = await self.backend.get(slot)

            if existing is not None and not existing.is_expired(now):
                elapsed = now - existing.issued_at
                if elapsed < cooldown:
                    seconds_remaining = math.ceil((cooldown - elapsed).total_seconds())
                    logger.info(f"Challenge cooldown active for {purpose.value}")
                    return RateLimited(seconds_remaining=max(1, seconds_remaining))

            code = self.code_factory()
            payload_hash = self.hash_payload(aux_payload) if aux_payload is not None else None
            challenge = Challenge(
                subject_key=subject_key,
                purpose=purpose,
                code_hash=self.hash_code(subject_key, code),
                issued_at=now,
                expires_at=now + ttl,
                attempts_remaining=max_attempts,
                aux_payload_hash=payload_hash,
                pending_email=pending_email,
            )
            await self.backend.put(slot, challenge, self._keep_seconds(challenge, now))

        logger.info(f"Issued {purpose.value} challenge, expires {challenge.expires_at.isoformat()}")
        return Issued(code=code, expires_at=challenge.expires_at)

    async def verify(
        self,
        subject_key: str,
        purpose: ChallengePurpose,
        submitted_code: str,
        aux_payload: str | None = None,
        pending_email: str | None = None,
    ) -> VerifyOutcome:
        """
        Check a submitted code.

        Payload and pending-email mismatches are reported before the code is
        compared and do not consume an attempt.
        """
        slot = _slot(subject_key, purpose)
        async with self.backend.lock(slot):
            now = self.clock()
            challenge = await self.backend.get(slot)

            if challenge is None:
                return NotRequested()

            if challenge.is_expired(now):
                await self.backend.delete(slot)
                logger.info(f"Expired {purpose.value} challenge discarded at verify")
                return Expired()

            if challenge.aux_payload_hash is not None and (
                aux_payload is None or self.hash_payload(aux_payload) != challenge.aux_payload_hash
            ):
                return PayloadChanged()

            if challenge.pending_email is not None and pending_email != challenge.pending_email:
                return EmailMismatch()

            submitted_hash = self.hash_code(subject_key, (submitted_code or "").strip())
            if hmac.compare_digest(submitted_hash, challenge.code_hash):
                await self.backend.delete(slot)
                logger.info(f"Verified {purpose.value} challenge")
                return Verified()

            challenge.attempts_remaining -= 1
            if challenge.attempts_remaining <= 0:
                await self.backend.delete(slot)
                logger.warning(f"{purpose.value} challenge exhausted its attempts")
                return Exhausted()

            await self.backend.put(slot, challenge, self._keep_seconds(challenge, now))
            return Invalid(attempts_remaining=challenge.attempts_remaining)

    async def cancel(self, subject_key: str, purpose: ChallengePurpose) -> None:
        """Delete any challenge held for ``(subject_key, purpose)``."""
        if not subject_key:
            return
        slot = _slot(subject_key, purpose)
        async with self.backend.lock(slot):
            await self.backend.delete(slot)

    async def cancel_all(self, subject_keys: list[str]) -> None:
        """Cancel every purpose for each of ``subject_keys``."""
        for subject_key in subject_keys:
            for purpose in ChallengePurpose:
                await self.cancel(subject_key, purpose)

    async def purge_expired(self) -> int:
        removed = await self.backend.purge_expired(self.clock())
        if removed:
            logger.info(f"Purged {removed} expired challenge(s)")
        return removed

    def _keep_seconds(self, challenge: Challenge, now: datetime) -> int:
        return math.ceil((challenge.expires_at - now + self.retention).total_seconds())


__all__ = ["ChallengeStore", "generate_code", "utcnow"]
