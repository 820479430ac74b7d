"""
APScheduler setup for daily backups.

Runs the full backup once a day at the configured hour and minute. Only one
run can be active at a time within the scheduling process.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from r2backup.backup.executor import run_backup
from r2backup.config import BackupJobConfig


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'r2_backup'


def _scheduled_backup(config: BackupJobConfig):
    """Scheduler entry point; a failed run must not stop the scheduler."""
    result = run_backup(config)
    if not result.success:
        logger.error(f"Scheduled backup failed: {result.error}")


def init_scheduler(config: BackupJobConfig) -> BlockingScheduler:
    """
    Create a scheduler with the daily backup job.

    Args:
        config: Run configuration (provides schedule_hour / schedule_minute)

    Returns:
        Configured, not yet started, BlockingScheduler
    """
    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults)

    scheduler.add_job(
        func=_scheduled_backup,
        trigger=CronTrigger(hour=config.schedule_hour, minute=config.schedule_minute),
        args=[config],
        id=BACKUP_JOB_ID,
        name=f"Daily backup ({config.prefix})",
        replace_existing=True
    )

    return scheduler


def start_scheduler(config: BackupJobConfig):
    """
    Run the daily backup schedule until interrupted.

    Args:
        config: Run configuration
    """
    scheduler = init_scheduler(config)
    logger.info(
        f"Scheduling daily backup at {config.schedule_hour:02d}:{config.schedule_minute:02d} "
        f"for prefix {config.prefix}"
    )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
