"""
APScheduler Configuration

Background scheduler for the settlement engine. Jobs never overlap with
themselves (max_instances=1) and missed runs are collapsed into one
(coalesce). Overlap with the cron endpoint or a manual trigger is safe at
the service level.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from settlement.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 300,
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


def start_scheduler():
    """Start the background job scheduler with settlement jobs."""
    if scheduler.running:
        return

    from settlement.jobs.settlement_jobs import run_settlement_cycle, reconcile_stuck_payouts

    scheduler.add_job(
        run_settlement_cycle,
        'interval',
        minutes=settings.SETTLEMENT_INTERVAL_MINUTES,
        id='settlement_cycle',
        name='Settlement Cycle',
        replace_existing=True,
    )

    scheduler.add_job(
        reconcile_stuck_payouts,
        'interval',
        minutes=settings.RECONCILE_INTERVAL_MINUTES,
        id='reconcile_stuck_payouts',
        name='Reconcile Stuck Payouts',
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Settlement scheduler started")

    # Log all scheduled jobs
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
