"""
Background Job Scheduler

Scheduled task execution using APScheduler's AsyncIOScheduler.

Jobs are registered into a module registry (with their trigger) during
startup. ``start_scheduler`` adds every registered job, and jobs registered
after start are added immediately. Failed runs are logged and never stop
the scheduler.
"""

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Coroutine[Any, Any, Any]]


@dataclass
class RegisteredJob:
    func: JobFunc
    trigger: BaseTrigger


_scheduler: AsyncIOScheduler | None = None
_job_registry: dict[str, RegisteredJob] = {}

JOB_DEFAULTS = {
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": 60 * 5,
}


def _job_listener(event: JobExecutionEvent) -> None:
    if event.exception:
        logger.error(
            f"Job {event.job_id} failed with exception: {event.exception}",
            exc_info=event.exception,
        )
    else:
        logger.info(f"Job {event.job_id} executed successfully")


def _add_to_scheduler(job_id: str, job: RegisteredJob) -> None:
    if _scheduler is None:
        return
    _scheduler.add_job(job.func, trigger=job.trigger, id=job_id, replace_existing=True)
    logger.info(f"Scheduled job: {job_id}")


def get_scheduler() -> AsyncIOScheduler | None:
    return _scheduler


async def start_scheduler() -> AsyncIOScheduler:
    """
    Create and start the scheduler, adding all registered jobs.

    Returns:
        The running scheduler
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running, returning existing instance")
        return _scheduler

    _scheduler = AsyncIOScheduler(timezone="UTC", job_defaults=JOB_DEFAULTS)
    _scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    for job_id, job in _job_registry.items():
        _add_to_scheduler(job_id, job)

    _scheduler.start()
    logger.info(f"Background job scheduler started with {len(_job_registry)} job(s)")
    return _scheduler


async def stop_scheduler() -> None:
    """Shut the scheduler down, waiting for running jobs."""
    global _scheduler

    if _scheduler is None or not _scheduler.running:
        logger.debug("Scheduler not running, nothing to stop")
        _scheduler = None
        return

    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Background job scheduler stopped")


def register_job(job_id: str, func: JobFunc, trigger: BaseTrigger) -> None:
    """
    Register a job for scheduling and manual triggering.

    Example:
        register_job(
            job_id="challenges_purge_expired",
            func=purge_expired_challenges,
            trigger=IntervalTrigger(minutes=15),
        )
    """
    job = RegisteredJob(func=func, trigger=trigger)
    _job_registry[job_id] = job
    _add_to_scheduler(job_id, job)


async def trigger_job_manually(job_id: str) -> dict[str, Any]:
    """
    Run a registered job immediately, outside its schedule.

    Raises:
        ValueError: If job_id is not registered
    """
    if job_id not in _job_registry:
        raise ValueError(
            f"Job {job_id} not found in registry. Available jobs: {list(_job_registry.keys())}"
        )

    executed_at = datetime.now(UTC)
    logger.info(f"Manually triggering job: {job_id}")

    try:
        result = await _job_registry[job_id].func()
    except Exception as e:
        logger.error(f"Manual execution of job {job_id} failed: {e}", exc_info=True)
        return {
            "job_id": job_id,
            "status": "error",
            "executed_at": executed_at.isoformat(),
            "error": str(e),
        }

    return {
        "job_id": job_id,
        "status": "success",
        "executed_at": executed_at.isoformat(),
        "result": result,
    }


def list_registered_jobs() -> list[dict[str, Any]]:
    """List registered jobs with their next run time when scheduled."""
    jobs = []
    for job_id in _job_registry:
        info: dict[str, Any] = {"job_id": job_id, "next_run_time": None}
        if _scheduler is not None:
            scheduled = _scheduler.get_job(job_id)
            if scheduled and scheduled.next_run_time:
                info["next_run_time"] = scheduled.next_run_time.isoformat()
        jobs.append(info)
    return jobs
