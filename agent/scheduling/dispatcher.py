"""
Dispatcher - sweeps due schedules and originates each call exactly once
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import redis

from config.settings import Settings
from followup.call_executor import VoiceCallGateway
from shared.errors import ConfigurationError, ValidationError
from shared.patients import PatientDirectory
from utils.time_utils import now_utc

from .models import CallLog, CallSchedule
from .scheduler import CallScheduler

logger = logging.getLogger("call-dispatcher")


@dataclass
class TickReport:
    """What one dispatcher sweep did"""
    started_at: datetime
    claimed: List[str] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    reaped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "claimed": len(self.claimed),
            "completed": list(self.completed),
            "failed": dict(self.failed),
            "reaped": list(self.reaped),
        }


class Dispatcher:
    """
    Claims due schedules and places their calls.

    Each schedule is claimed atomically before any external call, so racing
    ticks never call the same patient twice. Failures are recorded on the
    schedule and never retried.
    """

    def __init__(
        self,
        scheduler: CallScheduler,
        directory: PatientDirectory,
        gateway: VoiceCallGateway,
        settings: Settings
    ):
        self.scheduler = scheduler
        self.directory = directory
        self.gateway = gateway
        self.settings = settings

    async def run_tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        Run one sweep over due schedules

        Args:
            now: Sweep time (defaults to the current time)

        Returns:
            TickReport of claimed, completed, failed and reaped schedules
        """
        current_time = now or now_utc()
        report = TickReport(started_at=current_time)

        report.reaped = self.scheduler.reap_expired_claims(current_time)

        claim_token, claimed = self.scheduler.claim_due_schedules(
            current_time,
            limit=self.settings.dispatch_batch_size,
            lease_seconds=self.settings.claim_lease_seconds
        )
        report.claimed = [schedule.id for schedule in claimed]
        if not claimed:
            logger.debug("No due schedules")
            return report

        logger.info(f"Dispatching {len(claimed)} due schedules")
        semaphore = asyncio.Semaphore(max(self.settings.dispatch_concurrency, 1))
        started = time.monotonic()

        def clock() -> datetime:
            return current_time + timedelta(seconds=time.monotonic() - started)

        async def bounded(schedule: CallSchedule):
            async with semaphore:
                try:
                    return await self._dispatch_one(schedule, claim_token, clock)
                except Exception as e:
                    logger.error(f"Unexpected error dispatching schedule {schedule.id}: {e}", exc_info=True)
                    return self._fail(schedule, claim_token, f"Unexpected dispatch error: {e}")

        outcomes = await asyncio.gather(*(bounded(schedule) for schedule in claimed))

        for schedule, error in zip(claimed, outcomes):
            if error is None:
                report.completed.append(schedule.id)
            else:
                report.failed[schedule.id] = error

        logger.info(f"Tick done: {len(report.completed)} completed, {len(report.failed)} failed")
        return report

    async def _dispatch_one(self, schedule: CallSchedule, claim_token: str, clock) -> Optional[str]:
        """Place one claimed schedule's call; returns an error message or None"""
        patient = self.directory.get_patient(schedule.patient_id)
        if patient is None:
            return self._fail(schedule, claim_token, f"Patient {schedule.patient_id} not found")
        if not (patient.phone or "").strip():
            return self._fail(schedule, claim_token, "Patient has no phone number")

        # Schedules that waited on the semaphore may have been reaped meanwhile
        if not self.scheduler.renew_claim(schedule.id, claim_token, self.settings.claim_lease_seconds, clock()):
            logger.warning(f"Schedule {schedule.id} lost its claim before dialing; call not placed")
            return "Claim expired before the call was placed"

        timeout = self.settings.external_call_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self.gateway.originate_call(
                    patient.phone,
                    patient.name,
                    schedule.localized_variants,
                    metadata={"scheduleId": schedule.id, "patientId": patient.id}
                ),
                timeout=timeout
            )
        except ConfigurationError as e:
            return self._fail(schedule, claim_token, f"{e.message}. {e.hint}" if e.hint else e.message)
        except ValidationError as e:
            return self._fail(schedule, claim_token, e.message)
        except asyncio.TimeoutError:
            return self._fail(
                schedule, claim_token,
                f"Call provider did not respond within {timeout:g}s; the call outcome is unknown"
            )
        except Exception as e:
            logger.error(f"Unexpected error dispatching schedule {schedule.id}: {e}", exc_info=True)
            return self._fail(schedule, claim_token, f"Unexpected dispatch error: {e}")

        if not result.success:
            return self._fail(schedule, claim_token, result.error or "Call failed")

        # The call is placed: from here on nothing may fail the schedule
        try:
            completed = self.scheduler.complete_claimed(schedule.id, claim_token, result.provider_call_id, clock())
        except redis.RedisError as e:
            logger.error(f"Call {result.provider_call_id} placed but schedule {schedule.id} not marked completed: {e}")
            completed = False
        if not completed:
            logger.warning(f"Schedule {schedule.id} lost its claim after call {result.provider_call_id} was placed")

        call_log = CallLog(
            provider_call_id=result.provider_call_id,
            schedule_id=schedule.id,
            patient_id=patient.id,
            doctor_id=schedule.doctor_id or patient.doctor_id,
            patient_name=patient.name,
            patient_phone=patient.phone,
            message=schedule.localized_variants.get(self.settings.source_language) or schedule.message,
            scheduled_at=schedule.scheduled_at,
        )
        try:
            self.scheduler.create_call_log(call_log)
        except Exception as e:
            logger.error(f"Could not log call {result.provider_call_id} for schedule {schedule.id}: {e}", exc_info=True)

        if not completed:
            return f"Call {result.provider_call_id} was placed but the schedule claim was lost"
        return None

    def _fail(self, schedule: CallSchedule, claim_token: str, error_message: str) -> str:
        logger.error(f"Schedule {schedule.id} failed: {error_message}")
        try:
            self.scheduler.fail_claimed(schedule.id, claim_token, error_message)
        except redis.RedisError as e:
            logger.error(f"Could not record failure of schedule {schedule.id}; its lease will be reaped: {e}")
        return error_message
