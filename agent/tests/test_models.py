"""
Tests for scheduling data models
"""
from datetime import datetime, timedelta, timezone

from scheduling.models import CallLog, CallLogStatus, CallSchedule, ScheduleStatus


class TestScheduleStatus:
    """Tests for ScheduleStatus enum"""

    def test_values(self):
        assert ScheduleStatus.PENDING.value == "pending"
        assert ScheduleStatus.COMPLETED.value == "completed"
        assert ScheduleStatus.FAILED.value == "failed"
        assert ScheduleStatus.CANCELLED.value == "cancelled"

    def test_only_pending_is_not_terminal(self):
        assert not ScheduleStatus.PENDING.is_terminal
        assert all(s.is_terminal for s in ScheduleStatus if s is not ScheduleStatus.PENDING)


class TestCallLogStatus:
    """Tests for mapping provider end reasons"""

    def test_no_answer_reasons(self):
        for reason in ("customer-did-not-answer", "customer-busy", "voicemail"):
            assert CallLogStatus.from_ended_reason(reason) == CallLogStatus.NO_ANSWER

    def test_error_reasons(self):
        assert CallLogStatus.from_ended_reason("pipeline-error-openai-llm-failed") == CallLogStatus.FAILED

    def test_normal_hangup_is_completed(self):
        assert CallLogStatus.from_ended_reason("customer-ended-call") == CallLogStatus.COMPLETED
        assert CallLogStatus.from_ended_reason("") == CallLogStatus.COMPLETED


class TestCallSchedule:
    """Tests for CallSchedule model"""

    def test_defaults(self):
        schedule = CallSchedule(patient_id="patient-1", message="Hello")
        assert schedule.status == ScheduleStatus.PENDING
        assert schedule.claim_token == ""
        assert not schedule.is_claimed
        assert schedule.provider_call_id is None
        assert schedule.id

    def test_redis_hash_roundtrip(self, make_schedule):
        schedule = make_schedule(localized_variants={"english": "Hi", "telugu": "నమస్కారం"})
        data = schedule.to_dict()

        # Redis hashes only hold strings
        assert all(isinstance(value, str) for value in data.values())
        assert data["provider_call_id"] == ""
        assert "నమస్కారం" in data["localized_variants"]

        restored = CallSchedule.from_dict(data)
        assert restored.id == schedule.id
        assert restored.scheduled_at == schedule.scheduled_at
        assert restored.localized_variants == schedule.localized_variants
        assert restored.provider_call_id is None
        assert restored.completed_at is None
        assert restored.error_message is None

    def test_public_dict_uses_api_field_names(self, make_schedule):
        schedule = make_schedule()
        public = schedule.to_public_dict()
        assert public["patientId"] == "patient-1"
        assert public["status"] == "pending"
        assert public["localizedVariants"] == {"english": "Take your tablet after dinner"}
        assert "claim_token" not in public


class TestCallLog:
    """Tests for CallLog model"""

    def test_roundtrip_with_optional_fields(self, sample_call_log):
        sample_call_log.duration_seconds = 42
        restored = CallLog.from_dict(sample_call_log.to_dict())
        assert restored.duration_seconds == 42
        assert restored.started_at is None
        assert restored.status == CallLogStatus.INITIATED

    def test_calculate_duration(self):
        start = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
        call_log = CallLog(provider_call_id="c", started_at=start, ended_at=start + timedelta(seconds=95))
        call_log.calculate_duration()
        assert call_log.duration_seconds == 95

    def test_calculate_duration_needs_both_ends(self):
        call_log = CallLog(provider_call_id="c", started_at=datetime(2025, 1, 15, tzinfo=timezone.utc))
        call_log.calculate_duration()
        assert call_log.duration_seconds is None
