"""
ScheduleService - the doctor-facing scheduling operations behind the API and CLI
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from config.redis import create_redis_connection
from config.settings import Settings
from followup.call_business_logic import CallResult
from followup.call_executor import VoiceCallGateway
from followup.message_localizer import MessageLocalizer
from shared.errors import ProviderError, ValidationError
from shared.llm import OpenRouterClient
from shared.patients import PatientDirectory
from utils.time_utils import now_utc

from .dispatcher import Dispatcher, TickReport
from .models import CallLog, CallSchedule, ScheduleStatus
from .scheduler import CallScheduler
from .time_resolver import ResolvedTime, TimeResolver

logger = logging.getLogger("schedule-service")

TEST_CALL_MESSAGE = "This is a test call from PostCare AI. Your doctor is checking the voice assistant."


def parse_status(value: Optional[str]) -> Optional[ScheduleStatus]:
    if not value:
        return None
    try:
        return ScheduleStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown schedule status: {value}")


class ScheduleService:
    """Validates doctor requests and wires the scheduling components together"""

    def __init__(
        self,
        scheduler: CallScheduler,
        directory: PatientDirectory,
        resolver: TimeResolver,
        localizer: MessageLocalizer,
        gateway: VoiceCallGateway,
        dispatcher: Dispatcher,
        settings: Settings
    ):
        self.scheduler = scheduler
        self.directory = directory
        self.resolver = resolver
        self.localizer = localizer
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.settings = settings

    async def create_schedule(
        self,
        doctor_id: Optional[str],
        patient_id: str,
        message: str,
        scheduled_at: Optional[str] = None,
        when: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CallSchedule:
        """
        Create a pending schedule for one of the doctor's patients

        Args:
            doctor_id: Calling doctor
            patient_id: Patient to call
            message: Doctor-authored reminder text
            scheduled_at: Explicit ISO time (naive values are clinic-local)
            when: Natural-language time, used when scheduled_at is absent
            now: Creation time (defaults to the current time)

        Raises:
            ValidationError: Missing message/time/phone, or unresolvable time
            NotFoundError: Patient missing or owned by another doctor
        """
        text = (message or "").strip()
        if not patient_id:
            raise ValidationError("patientId is required")
        if not text:
            raise ValidationError("message is required")
        time_input = (scheduled_at or "").strip() or (when or "").strip()
        if not time_input:
            raise ValidationError("scheduledAt or when is required")

        patient = self.directory.get_patient_for_doctor(patient_id, doctor_id)
        if not (patient.phone or "").strip():
            raise ValidationError("Patient has no phone number")

        current_time = now or now_utc()
        resolved = await self.resolver.resolve(time_input, current_time)
        variants = await self.localizer.localize(text)

        schedule = CallSchedule(
            patient_id=patient.id,
            doctor_id=doctor_id or patient.doctor_id,
            scheduled_at=resolved.scheduled_at,
            time_label=resolved.label,
            message=text,
            localized_variants=variants,
            created_at=current_time,
            updated_at=current_time,
        )
        return self.scheduler.save_new_schedule(schedule)

    def list_schedules(self, doctor_id: Optional[str], patient_id: Optional[str] = None,
                       status: Optional[str] = None) -> List[CallSchedule]:
        return self.scheduler.list_schedules(doctor_id=doctor_id, patient_id=patient_id, status=parse_status(status))

    def cancel_schedule(self, doctor_id: Optional[str], schedule_id: str) -> CallSchedule:
        return self.scheduler.cancel_schedule(schedule_id, doctor_id=doctor_id)

    async def trigger(self, now: Optional[datetime] = None) -> TickReport:
        """Run one dispatcher sweep now"""
        return await self.dispatcher.run_tick(now)

    async def test_call(self, doctor_id: Optional[str], patient_id: str,
                        message: Optional[str] = None) -> Tuple[CallResult, CallLog]:
        """
        Call a patient immediately, bypassing the schedule store

        Raises:
            ValidationError: Missing patient id or phone
            NotFoundError: Patient missing or owned by another doctor
            ConfigurationError: Missing Vapi settings
            ProviderError: Provider rejected the call or timed out
        """
        if not patient_id:
            raise ValidationError("patientId is required")
        patient = self.directory.get_patient_for_doctor(patient_id, doctor_id)
        if not (patient.phone or "").strip():
            raise ValidationError("Patient has no phone number")

        text = (message or "").strip() or TEST_CALL_MESSAGE
        variants = await self.localizer.localize(text)

        timeout = self.settings.external_call_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self.gateway.originate_call(patient.phone, patient.name, variants,
                                            metadata={"patientId": patient.id, "testCall": True}),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise ProviderError(f"Call provider did not respond within {timeout:g}s; the call outcome is unknown")

        if not result.success:
            raise ProviderError(result.error or "Call failed", hint=result.hint)

        call_log = self.scheduler.create_call_log(CallLog(
            provider_call_id=result.provider_call_id,
            patient_id=patient.id,
            doctor_id=doctor_id or patient.doctor_id,
            patient_name=patient.name,
            patient_phone=patient.phone,
            message=variants.get(self.settings.source_language, text),
        ))
        logger.info(f"Test call {result.provider_call_id} placed to patient {patient.id}")
        return result, call_log

    async def preview_time(self, value: str, now: Optional[datetime] = None) -> ResolvedTime:
        return await self.resolver.resolve(value, now)

    async def preview_translation(self, message: str) -> Dict[str, str]:
        if not (message or "").strip():
            raise ValidationError("message is required")
        return await self.localizer.localize(message)

    def list_call_logs(self, doctor_id: Optional[str], patient_id: Optional[str] = None,
                       limit: int = 50) -> List[CallLog]:
        return self.scheduler.list_call_logs(doctor_id=doctor_id, patient_id=patient_id, limit=limit)

    def delete_patient(self, doctor_id: Optional[str], patient_id: str) -> Tuple[int, int]:
        """Delete a patient with their prescriptions, schedules and call logs"""
        self.directory.get_patient_for_doctor(patient_id, doctor_id)
        counts = self.scheduler.purge_patient(patient_id)
        self.directory.delete_patient(patient_id)
        return counts


def create_schedule_service(settings: Settings, redis_client=None, vapi_adapter=None, llm=None) -> ScheduleService:
    """
    Factory function wiring every scheduling component from one Settings object

    Args:
        settings: Application settings
        redis_client: Redis client (decode_responses=True); defaults to a new connection
        vapi_adapter: Vapi adapter override (tests pass MockVapiAdapter)
        llm: OpenRouter client override

    Returns:
        ScheduleService
    """
    redis_client = redis_client or create_redis_connection()
    llm = llm or OpenRouterClient(settings, timeout=settings.external_call_timeout_seconds)

    scheduler = CallScheduler(redis_client)
    directory = PatientDirectory(redis_client)
    gateway = VoiceCallGateway(settings, vapi_adapter)
    dispatcher = Dispatcher(scheduler, directory, gateway, settings)
    return ScheduleService(
        scheduler=scheduler,
        directory=directory,
        resolver=TimeResolver(settings, llm),
        localizer=MessageLocalizer(settings, llm),
        gateway=gateway,
        dispatcher=dispatcher,
        settings=settings,
    )
