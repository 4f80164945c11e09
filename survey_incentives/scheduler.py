# survey_incentives/scheduler.py
"""
Background task scheduler for pool maintenance.

Uses APScheduler to run periodic background jobs for:
- Expiring overdue gift cards
- Returning orphaned gift cards to the pool
"""

import logging

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from survey_incentives.background_tasks.pool_tasks import (
    cleanup_orphaned_pool_cards,
    expire_overdue_gift_cards,
)
from survey_incentives.core.config import settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def _on_job_error(event):
    """Log scheduler job errors with full context."""
    exc = event.exception
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        event.job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )
    if event.traceback:
        logger.error("Traceback for job %s:\n%s", event.job_id, event.traceback)


def _on_job_missed(event):
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def init_scheduler(start: bool = True):
    """
    Initialize the background scheduler with all periodic tasks.

    This is called once when the application starts up.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            'coalesce': True,  # Combine missed executions
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60
        }
    )

    scheduler.add_job(
        func=expire_overdue_gift_cards,
        trigger=IntervalTrigger(minutes=settings.EXPIRY_SWEEP_MINUTES),
        id='expire_overdue_gift_cards',
        name='Expire Overdue Gift Cards',
        replace_existing=True
    )
    logger.info(f"Scheduled job: expire_overdue_gift_cards (every {settings.EXPIRY_SWEEP_MINUTES} minutes)")

    scheduler.add_job(
        func=cleanup_orphaned_pool_cards,
        trigger=CronTrigger(hour=settings.ORPHAN_CLEANUP_HOUR, minute=0),
        id='cleanup_orphaned_pool_cards',
        name='Return Orphaned Gift Cards to Pool',
        replace_existing=True
    )
    logger.info(f"Scheduled job: cleanup_orphaned_pool_cards (daily at {settings.ORPHAN_CLEANUP_HOUR}:00 UTC)")

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    if start:
        scheduler.start()
        logger.info("Background scheduler started successfully")

    return scheduler


def shutdown_scheduler():
    """
    Gracefully shutdown the scheduler.

    This is called when the application shuts down.
    """
    global scheduler

    if scheduler is not None:
        if scheduler.running:
            scheduler.shutdown(wait=True)
        logger.info("Background scheduler shutdown complete")
        scheduler = None


def get_scheduler_status():
    """Current status of all scheduled jobs."""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        next_run_time = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": next_run_time.isoformat() if next_run_time else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs
    }
