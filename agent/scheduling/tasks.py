"""
RQ tasks for dispatching scheduled follow-up calls and recurring reminders
"""
import asyncio
import logging
from typing import Optional

from rq.decorators import job

from config.redis import create_queue_connection, create_redis_connection
from config.settings import load_settings
from followup.call_summarizer import CallSummarizer, summarize_call_log as summarize_log
from followup.reminder_sender import ReminderSender
from shared.llm import OpenRouterClient
from shared.patients import PatientDirectory

from .reminders import DailyFollowUpSweep, MedicationReminderSweep
from .scheduler import CallScheduler
from .service import create_schedule_service

logger = logging.getLogger("followup-tasks")

QUEUE_NAME = 'followup_calls'

# RQ stores pickled job data, so its connection must not decode responses
redis_conn = create_queue_connection()


@job(QUEUE_NAME, connection=redis_conn, timeout=300)
def process_due_schedules() -> str:
    """
    RQ task to dispatch every schedule that is due.
    This is typically run by the scheduler on a regular interval.

    Returns:
        Status message with the tick outcome
    """
    try:
        settings = load_settings()
        service = create_schedule_service(settings)
        report = asyncio.run(service.trigger())

        result_msg = (
            f"Claimed {len(report.claimed)} due schedules: {len(report.completed)} completed, "
            f"{len(report.failed)} failed, {len(report.reaped)} reaped"
        )
        logger.info(result_msg)
        return result_msg

    except Exception as e:
        error_msg = f"Exception processing due schedules: {str(e)}"
        logger.error(error_msg, exc_info=True)
        return error_msg


@job(QUEUE_NAME, connection=redis_conn, timeout=600)
def send_medication_reminders(slot: Optional[str] = None) -> str:
    """
    RQ task to send WhatsApp medication reminders for one slot

    Args:
        slot: morning, afternoon or evening (defaults to the current slot)

    Returns:
        Status message with counts
    """
    try:
        settings = load_settings()
        redis_client = create_redis_connection()
        sweep = MedicationReminderSweep(PatientDirectory(redis_client), ReminderSender(settings), settings)
        report = sweep.run(slot)

        result_msg = f"{report['slot'] or 'No'} reminders: {report['sent']} sent, {report['failed']} failed"
        logger.info(result_msg)
        return result_msg

    except Exception as e:
        error_msg = f"Exception sending medication reminders: {str(e)}"
        logger.error(error_msg, exc_info=True)
        return error_msg


@job(QUEUE_NAME, connection=redis_conn, timeout=600)
def send_daily_followups() -> str:
    """
    RQ task to send the daily check-in question to active patients

    Returns:
        Status message with counts
    """
    try:
        settings = load_settings()
        redis_client = create_redis_connection()
        sweep = DailyFollowUpSweep(PatientDirectory(redis_client), ReminderSender(settings), settings)
        report = sweep.run()

        result_msg = f"Daily follow-ups: {report['sent']} sent, {report['failed']} failed, {report['skipped']} skipped"
        logger.info(result_msg)
        return result_msg

    except Exception as e:
        error_msg = f"Exception sending daily follow-ups: {str(e)}"
        logger.error(error_msg, exc_info=True)
        return error_msg


@job(QUEUE_NAME, connection=redis_conn, timeout=120)
def summarize_call_log(provider_call_id: str) -> str:
    """
    RQ task to summarize a finished call's transcript

    Args:
        provider_call_id: Provider id of the call

    Returns:
        Status message
    """
    try:
        settings = load_settings()
        scheduler = CallScheduler(create_redis_connection())
        summarizer = CallSummarizer(OpenRouterClient(settings, timeout=settings.external_call_timeout_seconds))
        summary = asyncio.run(summarize_log(scheduler, summarizer, provider_call_id))

        if summary is None:
            return f"No summary stored for call {provider_call_id}"
        return f"Summarized call {provider_call_id}"

    except Exception as e:
        error_msg = f"Exception summarizing call {provider_call_id}: {str(e)}"
        logger.error(error_msg, exc_info=True)
        return error_msg


def enqueue_summary(provider_call_id: str):
    """Queue summarization of a call log (used by the webhook)"""
    return summarize_call_log.delay(provider_call_id)
