"""
Tests for applying provider webhook events to call logs
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from followup.outcome_recorder import CallOutcomeRecorder, extract_recording_url, extract_transcript
from scheduling.models import CallLogStatus

from conftest import NOW


def end_of_call_report(call_id="vapi-call-1", **overrides):
    message = {
        "type": "end-of-call-report",
        "call": {"id": call_id},
        "endedReason": "customer-ended-call",
        "startedAt": "2025-01-15T10:00:05Z",
        "endedAt": "2025-01-15T10:01:35Z",
        "artifact": {
            "transcript": "AI: Hello Ravi\nUser: I took it",
            "recording": {"url": "https://storage.vapi.test/rec.wav"},
        },
    }
    message.update(overrides)
    return {"message": message}


@pytest.fixture
def enqueue():
    return Mock()


@pytest.fixture
def recorder(call_scheduler, sample_call_log, enqueue):
    call_scheduler.create_call_log(sample_call_log)
    return CallOutcomeRecorder(call_scheduler, enqueue_summary=enqueue)


class TestExtractors:
    """Tests for transcript and recording extraction"""

    def test_recording_url_locations(self):
        assert extract_recording_url({"artifact": {"recording": {"mp3Url": "a.mp3"}}}) == "a.mp3"
        assert extract_recording_url({"artifact": {"recordingUrl": "b.wav"}}) == "b.wav"
        assert extract_recording_url({"recordingUrl": "c.wav"}) == "c.wav"
        assert extract_recording_url({}) == ""

    def test_transcript_locations(self):
        assert extract_transcript({"artifact": {"transcript": " hi "}}) == "hi"
        assert extract_transcript({"transcript": "hello"}) == "hello"
        assert extract_transcript({}) == ""


class TestCallOutcomeRecorder:
    """Tests for CallOutcomeRecorder.handle_event"""

    @pytest.mark.parametrize("body", [
        {},
        {"message": "not-a-dict"},
        {"message": {"type": "transcript", "call": {"id": "vapi-call-1"}}},
        {"message": {"type": "status-update", "status": "queued", "call": {"id": "vapi-call-1"}}},
        {"message": {"type": "end-of-call-report"}},
    ])
    def test_ignored_events(self, recorder, body):
        assert recorder.handle_event(body, NOW) == "ignored"

    def test_unknown_call_is_orphan(self, recorder, call_scheduler, enqueue):
        outcome = recorder.handle_event(end_of_call_report("someone-else"), NOW)

        assert outcome == "orphan"
        assert call_scheduler.get_call_log_by_provider_id("someone-else") is None
        events = call_scheduler.list_orphan_events()
        assert events[0]["provider_call_id"] == "someone-else"
        assert events[0]["ended_reason"] == "customer-ended-call"
        enqueue.assert_not_called()

    def test_started(self, recorder, call_scheduler):
        body = {"message": {
            "type": "status-update", "status": "in-progress",
            "call": {"id": "vapi-call-1"}, "startedAt": "2025-01-15T10:00:05Z",
        }}

        assert recorder.handle_event(body, NOW) == "started"
        assert recorder.handle_event(body, NOW) == "duplicate"
        stored = call_scheduler.get_call_log("log-1")
        assert stored.started_at == datetime(2025, 1, 15, 10, 0, 5, tzinfo=timezone.utc)

    def test_started_without_timestamp_uses_now(self, recorder, call_scheduler):
        body = {"message": {"type": "status-update", "status": "ringing", "call": {"id": "vapi-call-1"}}}
        recorder.handle_event(body, NOW)
        assert call_scheduler.get_call_log("log-1").started_at == NOW

    def test_ended(self, recorder, call_scheduler, enqueue):
        assert recorder.handle_event(end_of_call_report(durationSeconds=88.6), NOW) == "ended"

        stored = call_scheduler.get_call_log("log-1")
        assert stored.status == CallLogStatus.COMPLETED
        assert stored.transcript == "AI: Hello Ravi\nUser: I took it"
        assert stored.recording_url == "https://storage.vapi.test/rec.wav"
        assert stored.ended_reason == "customer-ended-call"
        assert stored.duration_seconds == 88
        enqueue.assert_called_once_with("vapi-call-1")

    def test_duration_computed_when_missing(self, recorder, call_scheduler):
        recorder.handle_event(end_of_call_report(), NOW)
        assert call_scheduler.get_call_log("log-1").duration_seconds == 90

    def test_replayed_report_is_noop(self, recorder, call_scheduler, enqueue):
        recorder.handle_event(end_of_call_report(), NOW)
        first = call_scheduler.get_call_log("log-1")

        assert recorder.handle_event(end_of_call_report(), NOW) == "duplicate"
        assert call_scheduler.get_call_log("log-1").updated_at == first.updated_at
        enqueue.assert_called_once()

    def test_new_transcript_is_applied(self, recorder, call_scheduler, enqueue):
        recorder.handle_event(end_of_call_report(), NOW)
        updated = end_of_call_report(artifact={"transcript": "AI: Hello Ravi\nUser: I took it\nAI: Bye"})

        assert recorder.handle_event(updated, NOW) == "ended"
        stored = call_scheduler.get_call_log("log-1")
        assert stored.transcript.endswith("AI: Bye")
        # Earlier recording is kept when the new report has none
        assert stored.recording_url == "https://storage.vapi.test/rec.wav"
        assert enqueue.call_count == 2

    def test_no_answer(self, recorder, call_scheduler, enqueue):
        recorder.handle_event(end_of_call_report(endedReason="customer-did-not-answer", artifact={}), NOW)

        stored = call_scheduler.get_call_log("log-1")
        assert stored.status == CallLogStatus.NO_ANSWER
        enqueue.assert_not_called()

    def test_enqueue_failure_is_logged(self, call_scheduler, sample_call_log):
        call_scheduler.create_call_log(sample_call_log)
        recorder = CallOutcomeRecorder(call_scheduler, enqueue_summary=Mock(side_effect=ConnectionError("redis down")))

        assert recorder.handle_event(end_of_call_report(), NOW) == "ended"
        assert call_scheduler.get_call_log("log-1").status == CallLogStatus.COMPLETED
