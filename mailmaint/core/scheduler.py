from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
import logging

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = BackgroundScheduler(
    timezone="UTC",
    job_defaults={
        'coalesce': True,
        'max_instances': 1,
        'misfire_grace_time': 3600
    }
)


def job_listener(event):
    if event.exception:
        logger.error(f"Job {event.job_id} failed with exception: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully")


def run_cleanup_job():
    from mailmaint.tasks.data_retention import run_all_cleanup_tasks

    logger.info("Starting scheduled cleanup tasks...")
    try:
        run_all_cleanup_tasks()
    except Exception as e:
        logger.error(f"Error running scheduled cleanup tasks: {e}")


def init_scheduler():
    scheduler.add_listener(job_listener, EVENT_JOB_ERROR | EVENT_JOB_EXECUTED)

    scheduler.add_job(
        run_cleanup_job,
        trigger=CronTrigger(
            hour=3,
            minute=30
        ),
        id='daily_run_cleanup',
        name='Daily Plan Run Retention Cleanup',
        replace_existing=True
    )

    logger.info("Scheduler initialized with cleanup jobs")
    logger.info("  - Plan run cleanup: Daily at 03:30 UTC")


def start_scheduler():
    if not scheduler.running:
        scheduler.start()
        logger.info("Background scheduler started")


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
