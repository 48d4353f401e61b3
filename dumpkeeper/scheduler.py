"""
APScheduler configuration and job scheduling for dumpkeeper.

Manages:
- The recurring dump job (based on DUMP_SCHEDULE_CRON)
- Manual "run now" triggers
"""

import logging
from datetime import datetime, timedelta, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from dumpkeeper.dump.settings import ConfigurationError
from dumpkeeper.dump.orchestrator import execute_configured_dump


logger = logging.getLogger(__name__)

DUMP_JOB_ID = 'scheduled_dump'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one dump at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    cron = app.config.get('DUMP_SCHEDULE_CRON')
    if cron:
        scheduler.add_job(
            func=_execute_dump_wrapper,
            trigger=CronTrigger.from_crontab(cron, timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')),
            id=DUMP_JOB_ID,
            name='Scheduled Dump',
            replace_existing=True
        )
        logger.info(f"Scheduled dump job ({cron})")
    else:
        logger.info("DUMP_SCHEDULE_CRON not set, no recurring dump scheduled")

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_dump_wrapper():
    """
    Run a dump inside the stored Flask app's context.

    Exceptions are logged rather than raised so the scheduler keeps running.
    """
    global flask_app

    with flask_app.app_context():
        try:
            report = execute_configured_dump()
            logger.info(f"Scheduled dump finished: state={report.state.value}, outcome={report.outcome}")
        except ConfigurationError as e:
            logger.error(f"Scheduled dump not run, configuration invalid: {e}")


def trigger_dump_now() -> str:
    """
    Manually trigger a dump immediately.

    Returns:
        ID of the one-time scheduler job

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    # One-time job with a short delay to avoid racing the caller
    now = datetime.now(timezone.utc)
    job_id = f"manual_{int(now.timestamp())}"
    scheduler.add_job(
        func=_execute_dump_wrapper,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual Dump',
        replace_existing=True
    )

    logger.info(f"Manually triggered dump ({job_id})")
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    """Check if scheduler is running in this process."""
    global scheduler

    return scheduler is not None and scheduler.running
