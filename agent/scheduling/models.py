"""
Data models for the PostCare call scheduling system
"""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from utils.time_utils import datetime_or_none, isoformat_or_empty, now_utc


class ScheduleStatus(Enum):
    """Lifecycle status of a scheduled call"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ScheduleStatus.PENDING


class CallLogStatus(Enum):
    """Status of an actual provider call"""
    INITIATED = "initiated"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no-answer"

    @property
    def is_terminal(self) -> bool:
        return self is not CallLogStatus.INITIATED

    @classmethod
    def from_ended_reason(cls, ended_reason: str) -> "CallLogStatus":
        """Map a provider end reason onto a terminal call status"""
        reason = (ended_reason or "").lower()
        if reason in ("customer-did-not-answer", "customer-busy", "voicemail", "no-answer"):
            return cls.NO_ANSWER
        if "error" in reason or "failed" in reason:
            return cls.FAILED
        return cls.COMPLETED


@dataclass
class CallSchedule:
    """
    A persisted request to place a future voice call to a patient.

    localized_variants is computed once at creation and never rewritten.
    claim_token is non-empty only while a dispatcher owns the schedule.
    """
    # Core identification
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    patient_id: str = ""
    doctor_id: str = ""

    # Scheduling details
    scheduled_at: datetime = field(default_factory=now_utc)
    time_label: str = ""

    # Call content
    message: str = ""
    localized_variants: Dict[str, str] = field(default_factory=dict)

    # Lifecycle
    status: ScheduleStatus = ScheduleStatus.PENDING
    provider_call_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    # Dispatch lease
    claim_token: str = ""
    claimed_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary of strings for a Redis hash"""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "scheduled_at": self.scheduled_at.isoformat(),
            "time_label": self.time_label,
            "message": self.message,
            "localized_variants": json.dumps(self.localized_variants, ensure_ascii=False),
            "status": self.status.value,
            "provider_call_id": self.provider_call_id or "",
            "completed_at": isoformat_or_empty(self.completed_at),
            "error_message": self.error_message or "",
            "claim_token": self.claim_token,
            "claimed_at": isoformat_or_empty(self.claimed_at),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallSchedule":
        """Create from a Redis hash (empty strings mean None)"""
        variants = data.get("localized_variants") or "{}"
        if isinstance(variants, str):
            variants = json.loads(variants)

        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            doctor_id=data.get("doctor_id", ""),
            scheduled_at=datetime.fromisoformat(data["scheduled_at"]),
            time_label=data.get("time_label", ""),
            message=data.get("message", ""),
            localized_variants=variants,
            status=ScheduleStatus(data["status"]),
            provider_call_id=data.get("provider_call_id") or None,
            completed_at=datetime_or_none(data.get("completed_at")),
            error_message=data.get("error_message") or None,
            claim_token=data.get("claim_token", ""),
            claimed_at=datetime_or_none(data.get("claimed_at")),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"])
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation for API responses"""
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "doctorId": self.doctor_id,
            "scheduledAt": self.scheduled_at.isoformat(),
            "timeLabel": self.time_label,
            "message": self.message,
            "localizedVariants": dict(self.localized_variants),
            "status": self.status.value,
            "providerCallId": self.provider_call_id,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "errorMessage": self.error_message,
            "createdAt": self.created_at.isoformat(),
        }

    @property
    def is_claimed(self) -> bool:
        return bool(self.claim_token)


@dataclass
class CallLog:
    """
    One row per actual provider call. Patient name and phone are snapshots
    taken when the call was placed.
    """
    # Core identification
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    provider_call_id: str = ""
    schedule_id: Optional[str] = None

    # Patient snapshot
    patient_id: str = ""
    doctor_id: str = ""
    patient_name: str = ""
    patient_phone: str = ""
    message: str = ""

    # Timing
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    # Outcome
    status: CallLogStatus = CallLogStatus.INITIATED
    ended_reason: str = ""
    transcript: str = ""
    summary: str = ""
    recording_url: str = ""

    # Timestamps
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary of strings for a Redis hash"""
        return {
            "id": self.id,
            "provider_call_id": self.provider_call_id,
            "schedule_id": self.schedule_id or "",
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "patient_name": self.patient_name,
            "patient_phone": self.patient_phone,
            "message": self.message,
            "scheduled_at": isoformat_or_empty(self.scheduled_at),
            "started_at": isoformat_or_empty(self.started_at),
            "ended_at": isoformat_or_empty(self.ended_at),
            "duration_seconds": "" if self.duration_seconds is None else str(self.duration_seconds),
            "status": self.status.value,
            "ended_reason": self.ended_reason,
            "transcript": self.transcript,
            "summary": self.summary,
            "recording_url": self.recording_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallLog":
        """Create from a Redis hash (empty strings mean None)"""
        duration = data.get("duration_seconds")
        return cls(
            id=data["id"],
            provider_call_id=data["provider_call_id"],
            schedule_id=data.get("schedule_id") or None,
            patient_id=data.get("patient_id", ""),
            doctor_id=data.get("doctor_id", ""),
            patient_name=data.get("patient_name", ""),
            patient_phone=data.get("patient_phone", ""),
            message=data.get("message", ""),
            scheduled_at=datetime_or_none(data.get("scheduled_at")),
            started_at=datetime_or_none(data.get("started_at")),
            ended_at=datetime_or_none(data.get("ended_at")),
            duration_seconds=int(duration) if duration not in (None, "") else None,
            status=CallLogStatus(data["status"]),
            ended_reason=data.get("ended_reason", ""),
            transcript=data.get("transcript", ""),
            summary=data.get("summary", ""),
            recording_url=data.get("recording_url", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"])
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation for API responses"""
        return {
            "id": self.id,
            "providerCallId": self.provider_call_id,
            "scheduleId": self.schedule_id,
            "patientId": self.patient_id,
            "patientName": self.patient_name,
            "patientPhone": self.patient_phone,
            "message": self.message,
            "scheduledAt": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "durationSeconds": self.duration_seconds,
            "status": self.status.value,
            "endedReason": self.ended_reason,
            "transcript": self.transcript,
            "summary": self.summary,
            "recordingUrl": self.recording_url,
            "createdAt": self.created_at.isoformat(),
        }

    def calculate_duration(self):
        """Calculate and set duration from start/end times"""
        if self.started_at and self.ended_at:
            delta = self.ended_at - self.started_at
            self.duration_seconds = max(int(delta.total_seconds()), 0)
            self.updated_at = now_utc()
