"""
Challenges Module

One-time passcode challenges shared by the password change, email
verification and forgot-password workflows.

Components:
- ChallengeStore: issue / verify / cancel with cooldown, expiry and attempt limits
- Backends: in-process memory (default) or Redis
- Background job: periodic sweep of expired in-memory challenges
"""

from ums.modules.challenges.dependencies import build_challenge_store, get_challenge_store
from ums.modules.challenges.jobs import register_challenge_jobs
from ums.modules.challenges.models import ChallengePurpose
from ums.modules.challenges.store import ChallengeStore

__all__ = [
    "ChallengePurpose",
    "ChallengeStore",
    "build_challenge_store",
    "get_challenge_store",
    "register_challenge_jobs",
]
