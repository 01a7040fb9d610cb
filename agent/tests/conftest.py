"""
Pytest configuration and fixtures for PostCare scheduling tests
"""
import pytest
import fakeredis
import redis
from datetime import datetime, timedelta, timezone

from config.settings import Settings
from followup.vapi_adapter import MockVapiAdapter
from scheduling.models import CallLog, CallSchedule
from scheduling.scheduler import CallScheduler
from scheduling.service import create_schedule_service
from shared.patients import Patient, PatientDirectory

# 15:30 in Asia/Kolkata
NOW = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class StubLLM:
    """Stands in for OpenRouterClient; replies are consumed in order"""

    def __init__(self, replies=None, configured=True):
        self.replies = list(replies or [])
        self.configured = configured
        self.prompts = []

    async def complete(self, prompt, temperature=0.3):
        self.prompts.append(prompt)
        if not self.replies:
            return ""
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def redis_client():
    """In-memory Redis with Lua support"""
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def settings():
    """Fully configured settings with fake credentials"""
    return Settings(
        openrouter_api_key="or-test-key",
        vapi_api_key="vapi-test-key",
        vapi_assistant_id="asst-123",
        vapi_phone_number_id="phone-456",
        twilio_account_sid="AC123",
        twilio_auth_token="twilio-token",
        twilio_whatsapp_number="+14155238886",
        dispatch_concurrency=3,
        external_call_timeout_seconds=0.5,
    )


@pytest.fixture
def unconfigured_settings():
    """Settings with no provider credentials at all"""
    return Settings()


@pytest.fixture
def stub_llm():
    return StubLLM()


@pytest.fixture
def mock_vapi():
    return MockVapiAdapter()


@pytest.fixture
def call_scheduler(redis_client):
    return CallScheduler(redis_client)


@pytest.fixture
def directory(redis_client):
    return PatientDirectory(redis_client)


@pytest.fixture
def patient(directory):
    """An active patient owned by doctor-1"""
    return directory.save_patient(Patient(
        id="patient-1",
        doctor_id="doctor-1",
        name="Ravi Kumar",
        phone="98765 43210",
    ))


@pytest.fixture
def service(settings, redis_client, mock_vapi, stub_llm):
    """ScheduleService wired to fakeredis, the mock Vapi adapter and a stub LLM"""
    return create_schedule_service(settings, redis_client=redis_client, vapi_adapter=mock_vapi, llm=stub_llm)


@pytest.fixture
def make_schedule():
    """Factory for pending schedules relative to NOW"""
    def _make(patient_id="patient-1", doctor_id="doctor-1", minutes_from_now=5, created_at=None, **kwargs):
        created = created_at or NOW - timedelta(hours=1)
        defaults = dict(
            patient_id=patient_id,
            doctor_id=doctor_id,
            scheduled_at=NOW + timedelta(minutes=minutes_from_now),
            time_label="Today",
            message="Take your tablet after dinner",
            localized_variants={"english": "Take your tablet after dinner"},
            created_at=created,
            updated_at=created,
        )
        defaults.update(kwargs)
        return CallSchedule(**defaults)
    return _make


@pytest.fixture
def sample_call_log():
    return CallLog(
        id="log-1",
        provider_call_id="vapi-call-1",
        schedule_id="schedule-1",
        patient_id="patient-1",
        doctor_id="doctor-1",
        patient_name="Ravi Kumar",
        patient_phone="+919876543210",
        message="Take your tablet after dinner",
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def redis_test_db():
    """
    Real Redis connection for integration tests.
    Uses database 15 to avoid conflicts with development data.
    """
    try:
        client = redis.Redis(host='localhost', port=6379, db=15, decode_responses=True)
        client.ping()

        client.flushdb()

        yield client

        client.flushdb()
        client.close()

    except redis.ConnectionError:
        pytest.skip("Redis not available for integration tests")
