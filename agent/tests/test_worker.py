"""
Tests for worker functionality
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, Mock, patch

from scheduling.dispatcher import TickReport
from scheduling.tasks import process_due_schedules, send_daily_followups, send_medication_reminders
from scheduling.worker import (
    DISPATCH_JOB_ID, FOLLOWUP_JOB_ID, CallSchedulerDaemon, PostOpCallWorker, local_clock_to_utc_cron,
    reminder_job_id
)

from conftest import NOW


class TestCronConversion:
    """Tests for converting clinic-local times to UTC cron strings"""

    def test_kolkata(self):
        assert local_clock_to_utc_cron("08:00", "Asia/Kolkata", NOW) == "30 2 * * *"
        assert local_clock_to_utc_cron("20:00", "Asia/Kolkata", NOW) == "30 14 * * *"

    def test_dst_offset_follows_date(self):
        winter = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
        summer = datetime(2025, 7, 15, 12, 0, tzinfo=timezone.utc)
        assert local_clock_to_utc_cron("08:00", "America/New_York", winter) == "0 13 * * *"
        assert local_clock_to_utc_cron("08:00", "America/New_York", summer) == "0 12 * * *"


class TestPostOpCallWorker:
    """Tests for PostOpCallWorker class"""

    @patch('scheduling.worker.Scheduler')
    @patch('scheduling.worker.Queue')
    def test_init(self, mock_queue_class, mock_scheduler_class, settings):
        redis_conn = Mock()
        worker = PostOpCallWorker(settings, redis_conn=redis_conn)

        mock_queue_class.assert_called_once_with('followup_calls', connection=redis_conn)
        mock_scheduler_class.assert_called_once_with(queue=mock_queue_class.return_value, connection=redis_conn)
        assert worker.running is False

    @patch('scheduling.worker.Scheduler')
    @patch('scheduling.worker.Queue')
    def test_registers_recurring_jobs(self, mock_queue_class, mock_scheduler_class, settings):
        scheduler = MagicMock()
        scheduler.__contains__.return_value = False
        mock_scheduler_class.return_value = scheduler

        PostOpCallWorker(settings, redis_conn=Mock()).start_scheduler_daemon(check_interval=30)

        schedule_kwargs = scheduler.schedule.call_args.kwargs
        assert schedule_kwargs["func"] is process_due_schedules
        assert schedule_kwargs["interval"] == 30
        assert schedule_kwargs["repeat"] is None
        assert schedule_kwargs["id"] == DISPATCH_JOB_ID

        cron_calls = {call.kwargs["id"]: call for call in scheduler.cron.call_args_list}
        assert set(cron_calls) == {
            reminder_job_id("morning"), reminder_job_id("afternoon"), reminder_job_id("evening"), FOLLOWUP_JOB_ID
        }
        morning = cron_calls[reminder_job_id("morning")]
        assert morning.kwargs["func"] is send_medication_reminders
        assert morning.kwargs["args"] == ["morning"]
        assert cron_calls[FOLLOWUP_JOB_ID].kwargs["func"] is send_daily_followups
        scheduler.cancel.assert_not_called()

    @patch('scheduling.worker.Scheduler')
    @patch('scheduling.worker.Queue')
    def test_reregistering_replaces_jobs(self, mock_queue_class, mock_scheduler_class, settings):
        scheduler = MagicMock()
        scheduler.__contains__.return_value = True
        mock_scheduler_class.return_value = scheduler

        PostOpCallWorker(settings, redis_conn=Mock()).start_scheduler_daemon()

        cancelled = [call.args[0] for call in scheduler.cancel.call_args_list]
        assert DISPATCH_JOB_ID in cancelled
        assert FOLLOWUP_JOB_ID in cancelled
        assert len(cancelled) == 5
        assert scheduler.schedule.call_args.kwargs["interval"] == settings.dispatch_interval_seconds

    @patch('scheduling.worker.Worker')
    @patch('scheduling.worker.Scheduler')
    @patch('scheduling.worker.Queue')
    def test_start_worker(self, mock_queue_class, mock_scheduler_class, mock_worker_class, settings):
        worker = PostOpCallWorker(settings, redis_conn=Mock())

        worker.start_worker(worker_name="test-worker")

        mock_worker_class.assert_called_once()
        assert mock_worker_class.call_args.kwargs["name"] == "test-worker"
        mock_worker_class.return_value.work.assert_called_once()
        assert worker.running is False

    @patch('scheduling.worker.Scheduler')
    @patch('scheduling.worker.Queue')
    def test_stop_running_worker(self, mock_queue_class, mock_scheduler_class, settings):
        worker = PostOpCallWorker(settings, redis_conn=Mock())
        worker.worker = Mock()
        worker.running = True

        worker.stop()

        worker.worker.request_stop.assert_called_once()
        assert worker.running is False


class TestCallSchedulerDaemon:
    """Tests for the in-process ticker"""

    @pytest.fixture
    def daemon(self, settings, directory, patient):
        service = Mock()
        service.directory = directory
        service.trigger = AsyncMock(return_value=TickReport(started_at=NOW))
        sender = Mock()
        sender.send_followup_question.return_value = {"success": True}
        return CallSchedulerDaemon(settings, service=service, sender=sender)

    def test_tick_runs_every_sweep(self, daemon):
        results = daemon.tick(NOW)

        assert results["dispatch"]["claimed"] == 0
        assert results["reminders"]["slot"] is None
        assert results["followups"]["sent"] == 1
        daemon.service.trigger.assert_awaited_once_with(NOW)

    def test_dispatch_failure_does_not_stop_sweeps(self, daemon):
        daemon.service.trigger.side_effect = ConnectionError("Redis unavailable")

        results = daemon.tick(NOW)

        assert results["dispatch"] == {"error": "Redis unavailable"}
        assert results["followups"]["sent"] == 1

    @patch('scheduling.worker.signal.signal')
    def test_run_until_stopped(self, mock_signal, daemon):
        ticks = []

        def fake_tick(now=None):
            ticks.append(now)
            if len(ticks) == 2:
                daemon.stop()
            return {}

        daemon.tick = fake_tick
        daemon.run(check_interval=0.01)

        assert len(ticks) == 2
        assert daemon.running is False
        assert mock_signal.call_count == 2
