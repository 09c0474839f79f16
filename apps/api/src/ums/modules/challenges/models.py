"""
Challenge Models

The in-flight challenge record and the outcome variants returned by the
challenge store. Outcomes are plain values: callers branch on their type
instead of catching exceptions.
"""

import enum
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


class ChallengePurpose(str, enum.Enum):
    """What a one-time code authorizes."""

    PASSWORD_CHANGE = "password_change"
    EMAIL_VERIFICATION = "email_verification"
    FORGOT_PASSWORD = "forgot_password"


@dataclass
class Challenge:
    """
    A live one-time code bound to a subject key and purpose.

    Only the keyed hash of the code is kept. ``aux_payload_hash`` ties a
    password-change code to the new password it was requested for;
    ``pending_email`` is the address an email-verification code claims.
    """

    subject_key: str
    purpose: ChallengePurpose
    code_hash: str
    issued_at: datetime
    expires_at: datetime
    attempts_remaining: int
    aux_payload_hash: str | None = None
    pending_email: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["purpose"] = self.purpose.value
        data["issued_at"] = self.issued_at.isoformat()
        data["expires_at"] = self.expires_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Challenge":
        return cls(
            subject_key=data["subject_key"],
            purpose=ChallengePurpose(data["purpose"]),
            code_hash=data["code_hash"],
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            attempts_remaining=int(data["attempts_remaining"]),
            aux_payload_hash=data.get("aux_payload_hash"),
            pending_email=data.get("pending_email"),
        )


# Issue outcomes


@dataclass(frozen=True)
class Issued:
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class RateLimited:
    seconds_remaining: int


# Verify outcomes


@dataclass(frozen=True)
class Verified:
    pass


@dataclass(frozen=True)
class NotRequested:
    pass


@dataclass(frozen=True)
class Expired:
    pass


@dataclass(frozen=True)
class PayloadChanged:
    pass


@dataclass(frozen=True)
class EmailMismatch:
    pass


@dataclass(frozen=True)
class Invalid:
    attempts_remaining: int


@dataclass(frozen=True)
class Exhausted:
    pass


IssueOutcome = Issued | RateLimited
VerifyOutcome = Verified | NotRequested | Expired | PayloadChanged | EmailMismatch | Invalid | Exhausted
