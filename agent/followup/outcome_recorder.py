"""
Call Outcome Recorder - applies provider webhook events to call logs
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from scheduling.models import CallLogStatus
from utils.time_utils import now_utc, parse_iso_to_utc

logger = logging.getLogger("outcome-recorder")

STARTED_STATUSES = ("in-progress", "ringing")


def _parse_time(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return parse_iso_to_utc(value)
    except ValueError:
        logger.warning(f"Ignoring unparseable timestamp in webhook: {value}")
        return None


def extract_recording_url(message: Dict[str, Any]) -> str:
    artifact = message.get("artifact") or {}
    recording = artifact.get("recording") or {}
    if isinstance(recording, dict):
        url = recording.get("url") or recording.get("mp3Url")
        if url:
            return url
    return artifact.get("recordingUrl") or message.get("recordingUrl") or ""


def extract_transcript(message: Dict[str, Any]) -> str:
    artifact = message.get("artifact") or {}
    return (artifact.get("transcript") or message.get("transcript") or "").strip()


class CallOutcomeRecorder:
    """
    Reconciles asynchronous provider events with call logs.

    Events for unknown calls are acknowledged and kept on an operator list,
    never turned into new logs. Replays of the same terminal event are no-ops.
    """

    def __init__(self, scheduler, enqueue_summary: Optional[Callable[[str], Any]] = None):
        """
        Args:
            scheduler: CallScheduler holding the call logs
            enqueue_summary: Called with the provider call id when a transcript needs summarizing
        """
        self.scheduler = scheduler
        self.enqueue_summary = enqueue_summary

    def handle_event(self, body: Dict[str, Any], now: Optional[datetime] = None) -> str:
        """
        Apply one webhook body of the form {"message": {...}}

        Returns:
            What happened: ignored, orphan, started, ended or duplicate
        """
        message = (body or {}).get("message")
        if not isinstance(message, dict):
            return "ignored"

        event_type = message.get("type")
        if event_type == "status-update" and message.get("status") in STARTED_STATUSES:
            phase = "started"
        elif event_type == "end-of-call-report":
            phase = "ended"
        else:
            return "ignored"

        call_id = (message.get("call") or {}).get("id")
        if not call_id:
            return "ignored"

        call_log = self.scheduler.get_call_log_by_provider_id(call_id)
        if call_log is None:
            logger.warning(f"Webhook {event_type} for unknown provider call {call_id}; recorded as orphan")
            self.scheduler.record_orphan_event({
                "provider_call_id": call_id,
                "type": event_type,
                "status": message.get("status"),
                "ended_reason": message.get("endedReason"),
            })
            return "orphan"

        current_time = now or now_utc()
        if phase == "started":
            return self._apply_started(call_log, message, current_time)
        return self._apply_ended(call_log, message, current_time)

    def _apply_started(self, call_log, message: Dict[str, Any], current_time: datetime) -> str:
        if call_log.started_at is not None:
            return "duplicate"
        call_log.started_at = _parse_time(message.get("startedAt")) or current_time
        self.scheduler.save_call_log(call_log)
        logger.info(f"Call {call_log.provider_call_id} started")
        return "started"

    def _apply_ended(self, call_log, message: Dict[str, Any], current_time: datetime) -> str:
        transcript = extract_transcript(message)
        ended_reason = message.get("endedReason") or ""
        recording_url = extract_recording_url(message)
        status = CallLogStatus.from_ended_reason(ended_reason)

        if (call_log.status.is_terminal
                and call_log.status == status
                and call_log.transcript == transcript
                and call_log.ended_reason == ended_reason
                and call_log.recording_url == (recording_url or call_log.recording_url)):
            logger.info(f"Duplicate end-of-call report for {call_log.provider_call_id}; ignoring")
            return "duplicate"

        call_log.transcript = transcript
        call_log.ended_reason = ended_reason
        call_log.recording_url = recording_url or call_log.recording_url
        call_log.status = status
        call_log.started_at = _parse_time(message.get("startedAt")) or call_log.started_at
        call_log.ended_at = _parse_time(message.get("endedAt")) or current_time

        duration = message.get("durationSeconds")
        if isinstance(duration, (int, float)):
            call_log.duration_seconds = int(duration)
        else:
            call_log.calculate_duration()

        self.scheduler.save_call_log(call_log)
        logger.info(f"Call log updated: {call_log.provider_call_id} -> {call_log.patient_name} ({status.value})")

        if transcript and self.enqueue_summary is not None:
            try:
                self.enqueue_summary(call_log.provider_call_id)
            except Exception as e:
                logger.error(f"Failed to enqueue summary for {call_log.provider_call_id}: {e}")

        return "ended"
