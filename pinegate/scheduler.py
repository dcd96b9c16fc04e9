"""Background jobs inside the API process.

Runs the session health probe and trial cleanup on fixed intervals when
``scheduler.enabled`` is set. Jobs are plain synchronous functions on a
BackgroundScheduler thread; each opens its own DB session.
"""

import logging

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pinegate.config import PineGateConfig
from pinegate.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)

HEALTH_CHECK_JOB_ID = "session_health_check"
TRIAL_CLEANUP_JOB_ID = "trial_cleanup"

# Global scheduler instance
scheduler: BackgroundScheduler | None = None


def health_check_task(vault: CredentialVault, config: PineGateConfig) -> None:
    """Run one health probe pass."""
    from pinegate.db.connection import get_db_context
    from pinegate.services.health_prober import SessionHealthProber

    logger.info("=== SCHEDULED HEALTH CHECK STARTING ===")
    with get_db_context() as db:
        summary = SessionHealthProber(db, vault, config).run()
    logger.info("Scheduled health check finished: %s", summary)


def trial_cleanup_task(vault: CredentialVault, config: PineGateConfig) -> None:
    """Revoke expired trials."""
    from pinegate.db.connection import get_db_context
    from pinegate.services.trial_cleanup import cleanup_expired_trials

    with get_db_context() as db:
        summary = cleanup_expired_trials(db, vault, config)
    logger.info("Scheduled trial cleanup finished: %s", summary)


def job_listener(event) -> None:
    """Log job outcomes."""
    if event.exception:
        logger.error("Job %s crashed: %s", event.job_id, event.exception)
    else:
        logger.info("Job %s executed successfully", event.job_id)


def create_scheduler(vault: CredentialVault, config: PineGateConfig) -> BackgroundScheduler:
    """Create and configure the scheduler (idempotent)."""
    global scheduler

    if scheduler is not None:
        return scheduler

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    scheduler.add_job(
        health_check_task,
        IntervalTrigger(hours=config.prober.interval_hours),
        args=[vault, config],
        id=HEALTH_CHECK_JOB_ID,
        name="Session Health Check",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        trial_cleanup_task,
        IntervalTrigger(minutes=config.grants.trial_cleanup_interval_minutes),
        args=[vault, config],
        id=TRIAL_CLEANUP_JOB_ID,
        name="Trial Cleanup",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Scheduled health check every %.1fh and trial cleanup every %dm",
        config.prober.interval_hours, config.grants.trial_cleanup_interval_minutes,
    )
    return scheduler


def start_scheduler(vault: CredentialVault, config: PineGateConfig) -> BackgroundScheduler:
    """Create (if needed) and start the scheduler."""
    sched = create_scheduler(vault, config)
    if not sched.running:
        sched.start()
        for job in sched.get_jobs():
            logger.info("  - %s: %s", job.name, job.trigger)
    return sched


def stop_scheduler() -> None:
    """Stop the scheduler and forget it."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def get_scheduler_status() -> dict:
    """Current scheduler state and next run times."""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}
    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in scheduler.get_jobs()
        ],
    }
