"""
Delay Scheduler Service using APScheduler.
Holds one-shot jobs that resume executions suspended on a delay node.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.base import JobLookupError
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
import logging

logger = logging.getLogger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
    return _scheduler


def start_scheduler():
    """Start the scheduler if not already running."""
    scheduler = get_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info("[Scheduler] Started")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    global _scheduler
    scheduler = get_scheduler()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[Scheduler] Shutdown")
    _scheduler = None


def register_wakeup_job(
    job_id: str,
    run_at: float,
    callback: Callable,
    **kwargs
) -> str:
    """
    Register a one-shot job that fires at ``run_at``.

    Args:
        job_id: Unique identifier for the job; re-registering replaces it
        run_at: Epoch seconds at which to fire; past times fire immediately
        callback: Async function to call when job fires
        **kwargs: Additional arguments passed to the callback

    Returns:
        The job_id
    """
    scheduler = get_scheduler()
    run_date = datetime.fromtimestamp(run_at, tz=timezone.utc)

    scheduler.add_job(
        callback,
        trigger=DateTrigger(run_date=run_date, timezone="UTC"),
        id=job_id,
        replace_existing=True,
        misfire_grace_time=None,
        kwargs=kwargs
    )

    logger.info(f"[Scheduler] Registered wake-up job: {job_id} at {run_date.isoformat()}")
    return job_id


def remove_job(job_id: str) -> bool:
    """
    Remove a job from the scheduler.

    Returns:
        True if job was removed, False if not found
    """
    scheduler = get_scheduler()
    try:
        scheduler.remove_job(job_id)
        logger.info(f"[Scheduler] Removed job: {job_id}")
        return True
    except JobLookupError:
        logger.warning(f"[Scheduler] Job not found: {job_id}")
        return False


def get_job_info(job_id: str) -> Optional[Dict]:
    """
    Get information about a scheduled job.

    Returns:
        Dict with job info or None if not found
    """
    scheduler = get_scheduler()
    job = scheduler.get_job(job_id)
    if job:
        return {
            "id": job.id,
            "next_run_time": _next_run_iso(job),
            "trigger": str(job.trigger)
        }
    return None


def get_all_jobs() -> list:
    """Get list of all scheduled jobs."""
    scheduler = get_scheduler()
    return [
        {
            "id": job.id,
            "next_run_time": _next_run_iso(job),
            "trigger": str(job.trigger)
        }
        for job in scheduler.get_jobs()
    ]


def _next_run_iso(job) -> Optional[str]:
    # Jobs added before the scheduler starts have no next_run_time yet
    next_run = getattr(job, "next_run_time", None)
    return next_run.isoformat() if next_run else None
