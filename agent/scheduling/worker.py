"""
RQ Worker setup and management for the PostCare call scheduling system
"""
import asyncio
import logging
import multiprocessing
import signal
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional

from rq import Queue, Worker
from rq_scheduler import Scheduler

from config.redis import create_queue_connection
from config.settings import Settings, load_settings
from followup.reminder_sender import ReminderSender
from utils.time_utils import get_timezone, now_utc, parse_clock

from .reminders import DailyFollowUpSweep, MedicationReminderSweep
from .service import ScheduleService, create_schedule_service
from .tasks import (
    QUEUE_NAME, process_due_schedules, send_daily_followups, send_medication_reminders
)

logger = logging.getLogger("scheduling-worker")

DISPATCH_JOB_ID = "postop-dispatch-due-schedules"
FOLLOWUP_JOB_ID = "postop-daily-followups"


def reminder_job_id(slot: str) -> str:
    return f"postop-medication-reminders-{slot}"


def local_clock_to_utc_cron(clock: str, timezone_name: str, on_date: Optional[datetime] = None) -> str:
    """
    Daily cron expression (UTC) for a clinic-local "HH:MM"

    Args:
        clock: Local wall-clock time
        timezone_name: Clinic timezone
        on_date: Day whose UTC offset is used (defaults to today)
    """
    tz = get_timezone(timezone_name)
    local_clock = parse_clock(clock)
    day = (on_date or now_utc()).astimezone(tz).date()
    local_dt = tz.localize(datetime(day.year, day.month, day.day, local_clock.hour, local_clock.minute))
    utc_dt = local_dt.astimezone(get_timezone("UTC"))
    return f"{utc_dt.minute} {utc_dt.hour} * * *"


class PostOpCallWorker:
    """
    Manages RQ workers and the recurring jobs that feed them
    """

    def __init__(self, settings: Optional[Settings] = None, redis_conn=None):
        """Initialize the call worker with a bytes Redis connection for RQ"""
        self.settings = settings or load_settings()
        self.redis_conn = redis_conn or create_queue_connection()
        self.queue = Queue(QUEUE_NAME, connection=self.redis_conn)
        self.scheduler = Scheduler(queue=self.queue, connection=self.redis_conn)
        self.worker: Optional[Worker] = None
        self.running = False

    def start_worker(self, worker_name: Optional[str] = None):
        """
        Start the RQ worker to process dispatch, reminder and summary jobs

        Args:
            worker_name: Optional name for the worker (defaults to a timestamped name)
        """
        if self.running:
            logger.warning("Worker is already running")
            return

        logger.info("Starting PostCare follow-up worker...")

        self.worker = Worker(
            [self.queue],
            connection=self.redis_conn,
            name=worker_name or f"postop-worker-{int(time.time())}"
        )

        self.running = True

        try:
            self.worker.work(logging_level=logging.INFO)
        except KeyboardInterrupt:
            logger.info("Worker interrupted by user")
        finally:
            self.running = False
            logger.info("Worker stopped")

    def start_scheduler_daemon(self, check_interval: Optional[int] = None):
        """
        Register the recurring jobs with rq-scheduler

        Dispatch runs every check_interval seconds; medication reminders and
        daily follow-ups run as daily cron jobs at clinic-local times.

        Args:
            check_interval: Dispatch interval in seconds (defaults to settings)
        """
        interval = check_interval or self.settings.dispatch_interval_seconds
        logger.info(f"Registering recurring jobs (dispatch every {interval}s)...")

        for job_id in [DISPATCH_JOB_ID, FOLLOWUP_JOB_ID] + [reminder_job_id(s) for s in self.settings.reminder_slots]:
            if job_id in self.scheduler:
                self.scheduler.cancel(job_id)

        self.scheduler.schedule(
            scheduled_time=now_utc(),
            func=process_due_schedules,
            interval=interval,
            repeat=None,  # Repeat indefinitely
            id=DISPATCH_JOB_ID
        )

        for slot, clock in self.settings.reminder_slots.items():
            cron_string = local_clock_to_utc_cron(clock, self.settings.clinic_timezone)
            self.scheduler.cron(
                cron_string,
                func=send_medication_reminders,
                args=[slot],
                repeat=None,
                id=reminder_job_id(slot)
            )
            logger.info(f"{slot} reminders scheduled at {clock} {self.settings.clinic_timezone} ({cron_string} UTC)")

        followup_cron = local_clock_to_utc_cron(self.settings.daily_followup_time, self.settings.clinic_timezone)
        self.scheduler.cron(followup_cron, func=send_daily_followups, repeat=None, id=FOLLOWUP_JOB_ID)

        logger.info("Recurring jobs registered")

    def run_cron(self, check_interval: Optional[int] = None):
        """Register recurring jobs and run the rq-scheduler polling loop"""
        self.start_scheduler_daemon(check_interval)
        self.scheduler.run()

    def stop(self):
        """Stop the worker gracefully"""
        if self.worker and self.running:
            logger.info("Stopping worker...")
            self.worker.request_stop(signal.SIGTERM, None)
            self.running = False
        else:
            logger.info("Worker not running")


class CallSchedulerDaemon:
    """
    Standalone cooperative ticker: dispatch plus reminder sweeps in-process
    """

    def __init__(self, settings: Optional[Settings] = None, service: Optional[ScheduleService] = None,
                 sender: Optional[ReminderSender] = None):
        """Initialize the scheduler daemon"""
        self.settings = settings or load_settings()
        self.service = service or create_schedule_service(self.settings)
        sender = sender or ReminderSender(self.settings)
        self.reminder_sweep = MedicationReminderSweep(self.service.directory, sender, self.settings)
        self.followup_sweep = DailyFollowUpSweep(self.service.directory, sender, self.settings)
        self.running = False
        self._stop_event = threading.Event()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Scheduler daemon received signal {signum}, shutting down...")
        self.stop()

    def stop(self):
        self.running = False
        self._stop_event.set()

    def tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Run one dispatch sweep and the reminder sweeps; each step is isolated

        Returns:
            Dict with the dispatch report and both sweep reports
        """
        current_time = now or now_utc()
        results: Dict[str, Any] = {}

        try:
            results["dispatch"] = asyncio.run(self.service.trigger(current_time)).to_dict()
        except Exception as e:
            logger.error(f"Error in dispatch sweep: {e}", exc_info=True)
            results["dispatch"] = {"error": str(e)}

        try:
            results["reminders"] = self.reminder_sweep.run(now=current_time)
        except Exception as e:
            logger.error(f"Error in medication reminder sweep: {e}", exc_info=True)
            results["reminders"] = {"error": str(e)}

        try:
            results["followups"] = self.followup_sweep.run(now=current_time)
        except Exception as e:
            logger.error(f"Error in daily follow-up sweep: {e}", exc_info=True)
            results["followups"] = {"error": str(e)}

        return results

    def run(self, check_interval: Optional[int] = None):
        """
        Run the scheduler daemon until SIGINT/SIGTERM

        Args:
            check_interval: How often to sweep (seconds, defaults to settings)
        """
        interval = check_interval or self.settings.dispatch_interval_seconds
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        logger.info(f"Starting call scheduler daemon (checking every {interval}s)")
        self.running = True
        self._stop_event.clear()

        while self.running:
            started = time.monotonic()
            self.tick()
            elapsed = time.monotonic() - started
            self._stop_event.wait(max(interval - elapsed, 0))

        logger.info("Scheduler daemon stopped")


def _run_worker(worker_name: Optional[str]):
    worker = PostOpCallWorker()
    worker.start_worker(worker_name=worker_name)


def _run_daemon(check_interval: Optional[int]):
    CallSchedulerDaemon().run(check_interval=check_interval)


def main():
    """
    Main function for running worker or scheduler daemon
    """
    import argparse

    parser = argparse.ArgumentParser(description="PostCare Call Scheduling Worker")
    parser.add_argument(
        "mode",
        choices=["worker", "scheduler", "cron", "both"],
        help=(
            "Mode to run: worker (process RQ jobs), scheduler (in-process ticker), "
            "cron (rq-scheduler recurring jobs), or both (worker + ticker)"
        )
    )
    parser.add_argument(
        "--check-interval",
        type=int,
        default=None,
        help="Dispatch interval in seconds (default: DISPATCH_INTERVAL_SECONDS or 60)"
    )
    parser.add_argument(
        "--worker-name",
        help="Name for the worker process"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    # Set up logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.mode == "worker":
        _run_worker(args.worker_name)

    elif args.mode == "scheduler":
        _run_daemon(args.check_interval)

    elif args.mode == "cron":
        PostOpCallWorker().run_cron(check_interval=args.check_interval)

    elif args.mode == "both":
        # Run worker and ticker in separate processes
        worker_process = multiprocessing.Process(target=_run_worker, args=(args.worker_name,))
        scheduler_process = multiprocessing.Process(target=_run_daemon, args=(args.check_interval,))

        try:
            worker_process.start()
            scheduler_process.start()

            worker_process.join()
            scheduler_process.join()

        except KeyboardInterrupt:
            logger.info("Shutting down both processes...")
            worker_process.terminate()
            scheduler_process.terminate()
            worker_process.join()
            scheduler_process.join()


if __name__ == "__main__":
    main()
