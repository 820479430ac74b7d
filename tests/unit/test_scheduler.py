"""
Unit tests for scheduler (r2backup/scheduler.py).
"""

import dataclasses
from unittest.mock import MagicMock, patch

from apscheduler.triggers.cron import CronTrigger

from r2backup import scheduler as scheduler_module
from r2backup.models import RunResult


class TestSchedulerInitialization:

    @patch('r2backup.scheduler.BlockingScheduler')
    def test_init_scheduler(self, mock_scheduler_class, backup_config):
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        result = scheduler_module.init_scheduler(backup_config)

        assert result == mock_scheduler
        job_defaults = mock_scheduler_class.call_args[1]['job_defaults']
        assert job_defaults['max_instances'] == 1
        assert job_defaults['coalesce'] is True

        add_kwargs = mock_scheduler.add_job.call_args[1]
        assert add_kwargs['id'] == scheduler_module.BACKUP_JOB_ID
        assert add_kwargs['args'] == [backup_config]
        assert isinstance(add_kwargs['trigger'], CronTrigger)

    def test_trigger_uses_configured_time(self, backup_config):
        config = dataclasses.replace(backup_config, schedule_hour=2, schedule_minute=45)

        scheduler = scheduler_module.init_scheduler(config)
        trigger = scheduler.get_job(scheduler_module.BACKUP_JOB_ID).trigger

        fields = {f.name: str(f) for f in trigger.fields}
        assert fields['hour'] == '2'
        assert fields['minute'] == '45'

    @patch('r2backup.scheduler.init_scheduler')
    def test_start_scheduler_handles_interrupt(self, mock_init, backup_config):
        mock_init.return_value.start.side_effect = KeyboardInterrupt()

        scheduler_module.start_scheduler(backup_config)

        mock_init.return_value.start.assert_called_once()


class TestScheduledBackup:

    @patch('r2backup.scheduler.run_backup')
    def test_failed_run_does_not_raise(self, mock_run_backup, backup_config):
        mock_run_backup.return_value = RunResult(success=False, error='Upload failed')

        scheduler_module._scheduled_backup(backup_config)

        mock_run_backup.assert_called_once_with(backup_config)
