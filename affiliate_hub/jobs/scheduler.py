"""
APScheduler Configuration

Background jobs:
- sync_signature_sessions: reconcile outstanding e-signature sessions
- sweep_lead_events: re-queue lead status changes not yet applied
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from affiliate_hub.config import settings

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
    'misfire_grace_time': 60,
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='UTC'
)


async def run_job(job_name: str):
    """Run a named job, logging instead of raising into the scheduler."""
    from affiliate_hub.jobs.lead_jobs import sweep_lead_events
    from affiliate_hub.jobs.onboarding_jobs import sync_signature_sessions

    jobs = {
        'sync_signature_sessions': sync_signature_sessions,
        'sweep_lead_events': sweep_lead_events,
    }

    try:
        await jobs[job_name]()
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        scheduler.add_job(
            run_job,
            'interval',
            minutes=settings.ESIGN_SYNC_INTERVAL_MINUTES,
            args=['sync_signature_sessions'],
            id='sync_signature_sessions',
            name='Sync Signature Sessions',
            replace_existing=True,
        )

        scheduler.add_job(
            run_job,
            'interval',
            minutes=1,
            args=['sweep_lead_events'],
            id='sweep_lead_events',
            name='Sweep Lead Events',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

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
