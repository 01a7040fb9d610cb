"""
CallScheduler - Durable store for call schedules and call logs
"""
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import redis

from config.redis import create_redis_connection
from shared.errors import InvalidStateError, NotFoundError, ValidationError
from utils.redis_atomic import create_atomic_redis_ops
from utils.time_utils import now_utc

from .models import CallLog, CallSchedule, ScheduleStatus

logger = logging.getLogger("call-scheduler")

ORPHAN_EVENTS_LIMIT = 200
SUMMARY_CLAIM_TTL_SECONDS = 7 * 24 * 3600

STALE_CLAIM_ERROR = (
    "Dispatch was interrupted after the schedule was claimed; "
    "the call outcome is unknown. Re-schedule manually if needed."
)


class CallScheduler:
    """
    Stores call schedules and call logs in Redis.

    Handles:
    - Creating schedules with time/patient/doctor indexes
    - Atomic claim, finalize, cancel and reap transitions (Lua)
    - Call log persistence keyed by a unique provider call id
    - Operator-visible record of webhook events for unknown calls
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, key_prefix: str = "postop"):
        """Initialize the store with a Redis connection (decode_responses=True)"""
        self.redis_client = redis_client or create_redis_connection()
        self.schedules_key = f"{key_prefix}:call_schedules"
        self.logs_key = f"{key_prefix}:call_logs"
        self.atomic_ops = create_atomic_redis_ops(self.redis_client, self.schedules_key)

    # Schedules

    def _schedule_key(self, schedule_id: str) -> str:
        return f"{self.schedules_key}:{schedule_id}"

    def save_new_schedule(self, schedule: CallSchedule) -> CallSchedule:
        """
        Persist a new pending schedule and index it for dispatch

        Args:
            schedule: The schedule to store

        Returns:
            The stored schedule

        Raises:
            ValidationError: If the schedule is not pending or not in the future
        """
        if schedule.status != ScheduleStatus.PENDING:
            raise ValidationError("New schedules must be pending")
        if not schedule.patient_id:
            raise ValidationError("patientId is required")
        if not schedule.message.strip():
            raise ValidationError("message is required")
        if schedule.scheduled_at <= schedule.created_at:
            raise ValidationError("Scheduled time must be later than the creation time")

        pipe = self.redis_client.pipeline(transaction=True)
        pipe.hset(self._schedule_key(schedule.id), mapping=schedule.to_dict())
        pipe.zadd(f"{self.schedules_key}:by_time", {schedule.id: schedule.scheduled_at.timestamp()})
        pipe.sadd(f"{self.schedules_key}:patient:{schedule.patient_id}", schedule.id)
        if schedule.doctor_id:
            pipe.sadd(f"{self.schedules_key}:doctor:{schedule.doctor_id}", schedule.id)
        pipe.sadd(f"{self.schedules_key}:all", schedule.id)
        pipe.execute()

        logger.info(f"Scheduled call {schedule.id} for patient {schedule.patient_id} at {schedule.scheduled_at}")
        return schedule

    def get_schedule(self, schedule_id: str) -> Optional[CallSchedule]:
        """Get a schedule by id, or None"""
        data = self.redis_client.hgetall(self._schedule_key(schedule_id))
        if not data:
            return None
        return CallSchedule.from_dict(data)

    def require_schedule(self, schedule_id: str, doctor_id: Optional[str] = None) -> CallSchedule:
        """Get a schedule owned by doctor_id (when given) or raise NotFoundError"""
        schedule = self.get_schedule(schedule_id)
        if schedule is None or (doctor_id and schedule.doctor_id != doctor_id):
            raise NotFoundError("Schedule not found")
        return schedule

    def list_schedules(
        self,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        status: Optional[ScheduleStatus] = None
    ) -> List[CallSchedule]:
        """
        List schedules ordered by scheduled time ascending

        Args:
            doctor_id: Only schedules owned by this doctor
            patient_id: Only schedules for this patient
            status: Only schedules in this status
        """
        if patient_id:
            index_key = f"{self.schedules_key}:patient:{patient_id}"
        elif doctor_id:
            index_key = f"{self.schedules_key}:doctor:{doctor_id}"
        else:
            index_key = f"{self.schedules_key}:all"

        schedules = []
        for schedule_id in self.redis_client.smembers(index_key):
            data = self.redis_client.hgetall(self._schedule_key(schedule_id))
            if not data:
                continue
            try:
                schedule = CallSchedule.from_dict(data)
            except (KeyError, ValueError) as e:
                logger.error(f"Error deserializing schedule {schedule_id}: {e}")
                continue

            if doctor_id and schedule.doctor_id != doctor_id:
                continue
            if patient_id and schedule.patient_id != patient_id:
                continue
            if status and schedule.status != status:
                continue
            schedules.append(schedule)

        return sorted(schedules, key=lambda s: s.scheduled_at)

    def cancel_schedule(
        self,
        schedule_id: str,
        doctor_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CallSchedule:
        """
        Cancel a pending schedule that no dispatcher has claimed

        Raises:
            NotFoundError: Unknown schedule or owned by another doctor
            InvalidStateError: Schedule is terminal or being dispatched
        """
        self.require_schedule(schedule_id, doctor_id)

        current_time = now or now_utc()
        result = self.atomic_ops.cancel_schedule(schedule_id, current_time.isoformat())

        if result == "missing":
            raise NotFoundError("Schedule not found")
        if result == "dispatching":
            raise InvalidStateError("Schedule is being dispatched and can no longer be cancelled")
        if result != "ok":
            raise InvalidStateError(f"Only pending schedules can be cancelled (status: {result})")

        logger.info(f"Cancelled schedule {schedule_id}")
        return self.get_schedule(schedule_id)

    def claim_due_schedules(
        self,
        now: Optional[datetime] = None,
        limit: int = 50,
        lease_seconds: int = 300
    ) -> Tuple[str, List[CallSchedule]]:
        """
        Atomically claim due pending schedules for one dispatcher run

        Returns:
            Tuple of (claim_token, claimed schedules)
        """
        current_time = now or now_utc()
        claim_token = uuid.uuid4().hex
        lease_expiry = current_time + timedelta(seconds=lease_seconds)

        claimed_ids = self.atomic_ops.claim_due_schedules(
            current_time.timestamp(),
            current_time.isoformat(),
            lease_expiry.timestamp(),
            claim_token,
            limit
        )

        claimed = []
        for schedule_id in claimed_ids:
            schedule = self.get_schedule(schedule_id)
            if schedule is None:
                logger.error(f"Claimed schedule {schedule_id} disappeared")
                continue
            claimed.append(schedule)

        return claim_token, claimed

    def complete_claimed(
        self,
        schedule_id: str,
        claim_token: str,
        provider_call_id: str,
        now: Optional[datetime] = None
    ) -> bool:
        """Mark a claimed schedule completed once its call was placed"""
        current_time = now or now_utc()
        return self.atomic_ops.finalize_claim(
            schedule_id, claim_token, ScheduleStatus.COMPLETED.value,
            current_time.isoformat(), provider_call_id=provider_call_id
        )

    def renew_claim(self, schedule_id: str, claim_token: str, lease_seconds: int, now: Optional[datetime] = None) -> bool:
        """Extend a held claim by a fresh lease; False once it was reaped or finalized"""
        current_time = now or now_utc()
        lease_expiry = current_time + timedelta(seconds=lease_seconds)
        return self.atomic_ops.renew_claim(schedule_id, claim_token, lease_expiry.timestamp())

    def fail_claimed(
        self,
        schedule_id: str,
        claim_token: str,
        error_message: str,
        now: Optional[datetime] = None
    ) -> bool:
        """Mark a claimed schedule failed with an actionable error message"""
        current_time = now or now_utc()
        return self.atomic_ops.finalize_claim(
            schedule_id, claim_token, ScheduleStatus.FAILED.value,
            current_time.isoformat(), error_message=error_message
        )

    def reap_expired_claims(self, now: Optional[datetime] = None) -> List[str]:
        """Fail schedules whose dispatcher died between claim and finalize"""
        current_time = now or now_utc()
        return self.atomic_ops.reap_expired_claims(
            current_time.timestamp(), current_time.isoformat(), STALE_CLAIM_ERROR
        )

    # Call logs

    def _log_key(self, log_id: str) -> str:
        return f"{self.logs_key}:{log_id}"

    def create_call_log(self, call_log: CallLog) -> CallLog:
        """
        Store a new call log

        Raises:
            ValidationError: If the provider call id is missing or already logged
        """
        if not call_log.provider_call_id:
            raise ValidationError("providerCallId is required for a call log")

        claimed = self.redis_client.hsetnx(
            f"{self.logs_key}:by_provider", call_log.provider_call_id, call_log.id
        )
        if not claimed:
            raise ValidationError(f"Call log for provider call {call_log.provider_call_id} already exists")

        score = call_log.created_at.timestamp()
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.hset(self._log_key(call_log.id), mapping=call_log.to_dict())
        if call_log.patient_id:
            pipe.zadd(f"{self.logs_key}:patient:{call_log.patient_id}", {call_log.id: score})
        if call_log.doctor_id:
            pipe.zadd(f"{self.logs_key}:doctor:{call_log.doctor_id}", {call_log.id: score})
        pipe.zadd(f"{self.logs_key}:all", {call_log.id: score})
        pipe.execute()

        logger.info(f"Saved call log {call_log.id} for provider call {call_log.provider_call_id}")
        return call_log

    def get_call_log(self, log_id: str) -> Optional[CallLog]:
        data = self.redis_client.hgetall(self._log_key(log_id))
        if not data:
            return None
        return CallLog.from_dict(data)

    def get_call_log_by_provider_id(self, provider_call_id: str) -> Optional[CallLog]:
        """Look up a call log by the provider's call id"""
        log_id = self.redis_client.hget(f"{self.logs_key}:by_provider", provider_call_id)
        if not log_id:
            return None
        return self.get_call_log(log_id)

    def save_call_log(self, call_log: CallLog) -> CallLog:
        """Overwrite an existing call log"""
        call_log.updated_at = now_utc()
        self.redis_client.hset(self._log_key(call_log.id), mapping=call_log.to_dict())
        return call_log

    def list_call_logs(
        self,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        limit: int = 50
    ) -> List[CallLog]:
        """List call logs newest first"""
        if patient_id:
            index_key = f"{self.logs_key}:patient:{patient_id}"
        elif doctor_id:
            index_key = f"{self.logs_key}:doctor:{doctor_id}"
        else:
            index_key = f"{self.logs_key}:all"

        logs = []
        for log_id in self.redis_client.zrevrange(index_key, 0, -1):
            call_log = self.get_call_log(log_id)
            if call_log is None:
                continue
            if doctor_id and call_log.doctor_id != doctor_id:
                continue
            logs.append(call_log)
            if len(logs) >= limit:
                break
        return logs

    def claim_summary(self, log_id: str, transcript_digest: str) -> bool:
        """Allow exactly one summary generation per (call log, transcript)"""
        return bool(self.redis_client.set(
            f"{self.logs_key}:summary_claim:{log_id}:{transcript_digest}",
            "1",
            nx=True,
            ex=SUMMARY_CLAIM_TTL_SECONDS
        ))

    def store_summary(self, call_log: CallLog, transcript: str, summary: str) -> bool:
        """Store a summary if the transcript it describes is still current"""
        stored = self.atomic_ops.set_summary_if_transcript_matches(
            self._log_key(call_log.id), transcript, summary, now_utc().isoformat()
        )
        if not stored:
            logger.warning(f"Transcript for call log {call_log.id} changed; summary discarded")
        return stored

    def record_orphan_event(self, event: Dict[str, Any]) -> None:
        """Keep webhook events for unknown calls visible to operators"""
        entry = json.dumps({"received_at": now_utc().isoformat(), **event}, default=str)
        pipe = self.redis_client.pipeline()
        pipe.lpush(f"{self.logs_key}:orphan_events", entry)
        pipe.ltrim(f"{self.logs_key}:orphan_events", 0, ORPHAN_EVENTS_LIMIT - 1)
        pipe.execute()

    def list_orphan_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        raw = self.redis_client.lrange(f"{self.logs_key}:orphan_events", 0, limit - 1)
        return [json.loads(entry) for entry in raw]

    # Patient deletion cascade

    def purge_patient(self, patient_id: str) -> Tuple[int, int]:
        """
        Delete every schedule and call log of a deleted patient

        Returns:
            Tuple of (schedules deleted, call logs deleted)
        """
        schedule_ids = self.redis_client.smembers(f"{self.schedules_key}:patient:{patient_id}")
        log_ids = self.redis_client.zrange(f"{self.logs_key}:patient:{patient_id}", 0, -1)

        pipe = self.redis_client.pipeline(transaction=True)
        for schedule_id in schedule_ids:
            schedule = self.get_schedule(schedule_id)
            pipe.delete(self._schedule_key(schedule_id))
            pipe.zrem(f"{self.schedules_key}:by_time", schedule_id)
            pipe.zrem(f"{self.schedules_key}:claims", schedule_id)
            pipe.srem(f"{self.schedules_key}:all", schedule_id)
            if schedule and schedule.doctor_id:
                pipe.srem(f"{self.schedules_key}:doctor:{schedule.doctor_id}", schedule_id)
        pipe.delete(f"{self.schedules_key}:patient:{patient_id}")

        for log_id in log_ids:
            call_log = self.get_call_log(log_id)
            pipe.delete(self._log_key(log_id))
            pipe.zrem(f"{self.logs_key}:all", log_id)
            if call_log:
                pipe.hdel(f"{self.logs_key}:by_provider", call_log.provider_call_id)
                if call_log.doctor_id:
                    pipe.zrem(f"{self.logs_key}:doctor:{call_log.doctor_id}", log_id)
        pipe.delete(f"{self.logs_key}:patient:{patient_id}")
        pipe.execute()

        logger.info(f"Purged {len(schedule_ids)} schedules and {len(log_ids)} call logs for patient {patient_id}")
        return len(schedule_ids), len(log_ids)
