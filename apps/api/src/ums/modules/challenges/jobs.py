"""
Challenge Background Jobs

Expired challenges are normally discarded when someone tries to verify
them. This job sweeps the ones nobody came back for.
"""

import logging

from apscheduler.triggers.interval import IntervalTrigger

from ums.core.config import settings
from ums.core.scheduler import register_job
from ums.modules.challenges.store import ChallengeStore

logger = logging.getLogger(__name__)

JOB_ID_PURGE_EXPIRED = "challenges_purge_expired"


def register_challenge_jobs(store: ChallengeStore) -> None:
    """Register the expired-challenge sweep for ``store``."""

    async def purge_expired_challenges() -> dict[str, int]:
        removed = await store.purge_expired()
        return {"removed": removed}

    register_job(
        job_id=JOB_ID_PURGE_EXPIRED,
        func=purge_expired_challenges,
        trigger=IntervalTrigger(minutes=settings.challenge_purge_interval_minutes),
    )
