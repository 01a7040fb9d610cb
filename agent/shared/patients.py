"""
Patient directory - the patient and prescription records the schedulers read

Patients and prescriptions are owned by the wider platform; this module only
stores the fields call scheduling and reminders depend on, as JSON documents
in Redis.
"""
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import redis

from config.redis import create_redis_connection
from shared.errors import NotFoundError, ValidationError
from utils.time_utils import datetime_or_none, isoformat_or_empty, now_utc

logger = logging.getLogger("patient-directory")

REMINDER_SLOTS = ("morning", "afternoon", "evening")

# Once-per-period markers outlive the period they guard
MARKER_TTL_SECONDS = 2 * 24 * 3600


class PatientStatus(Enum):
    ACTIVE = "Active"
    CRITICAL = "Critical"
    RECOVERED = "Recovered"


@dataclass
class Patient:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    doctor_id: str = ""
    name: str = ""
    phone: str = ""
    status: PatientStatus = PatientStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Patient":
        return cls(
            id=data["id"],
            doctor_id=data.get("doctor_id", ""),
            name=data.get("name", ""),
            phone=data.get("phone", ""),
            status=PatientStatus(data.get("status", PatientStatus.ACTIVE.value)),
        )


@dataclass
class Prescription:
    """A medication course with the daily slots it should be taken in"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    patient_id: str = ""
    doctor_id: str = ""
    medicine_name: str = ""
    dosage: str = ""
    food_instruction: str = "After food"
    frequency: Dict[str, bool] = field(default_factory=lambda: {slot: False for slot in REMINDER_SLOTS})
    start_date: datetime = field(default_factory=now_utc)
    end_date: Optional[datetime] = None
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "medicine_name": self.medicine_name,
            "dosage": self.dosage,
            "food_instruction": self.food_instruction,
            "frequency": dict(self.frequency),
            "start_date": self.start_date.isoformat(),
            "end_date": isoformat_or_empty(self.end_date),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prescription":
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            doctor_id=data.get("doctor_id", ""),
            medicine_name=data.get("medicine_name", ""),
            dosage=data.get("dosage", ""),
            food_instruction=data.get("food_instruction", ""),
            frequency=dict(data.get("frequency") or {}),
            start_date=datetime.fromisoformat(data["start_date"]),
            end_date=datetime_or_none(data.get("end_date")),
            is_active=bool(data.get("is_active", True)),
        )

    def is_due(self, slot: str, now: datetime) -> bool:
        """Active, within its course, and taken in this slot"""
        if not self.is_active or not self.frequency.get(slot):
            return False
        if self.start_date > now:
            return False
        return self.end_date is None or self.end_date >= now


class PatientDirectory:
    """Redis-backed lookup of patients and prescriptions"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, key_prefix: str = "postop"):
        self.redis_client = redis_client or create_redis_connection()
        self.patients_key = f"{key_prefix}:patients"
        self.prescriptions_key = f"{key_prefix}:prescriptions"
        self.markers_key = f"{key_prefix}:sent_markers"

    # Patients

    def save_patient(self, patient: Patient) -> Patient:
        if not patient.name.strip():
            raise ValidationError("Patient name is required")

        pipe = self.redis_client.pipeline(transaction=True)
        pipe.set(f"{self.patients_key}:{patient.id}", json.dumps(patient.to_dict()))
        pipe.sadd(f"{self.patients_key}:all", patient.id)
        if patient.doctor_id:
            pipe.sadd(f"{self.patients_key}:doctor:{patient.doctor_id}", patient.id)
        pipe.execute()

        logger.info(f"Saved patient {patient.id} ({patient.status.value})")
        return patient

    def get_patient(self, patient_id: str) -> Optional[Patient]:
        raw = self.redis_client.get(f"{self.patients_key}:{patient_id}")
        if not raw:
            return None
        return Patient.from_dict(json.loads(raw))

    def get_patient_for_doctor(self, patient_id: str, doctor_id: Optional[str]) -> Patient:
        """
        Fetch a patient owned by the calling doctor

        Raises:
            NotFoundError: Unknown patient, or owned by another doctor
        """
        patient = self.get_patient(patient_id) if patient_id else None
        if patient is None or (doctor_id and patient.doctor_id != doctor_id):
            raise NotFoundError("Patient not found")
        return patient

    def list_patients(self, statuses: Optional[List[PatientStatus]] = None) -> List[Patient]:
        patients = []
        for patient_id in sorted(self.redis_client.smembers(f"{self.patients_key}:all")):
            patient = self.get_patient(patient_id)
            if patient is None:
                continue
            if statuses and patient.status not in statuses:
                continue
            patients.append(patient)
        return patients

    def list_active_patients(self) -> List[Patient]:
        """Patients who still get daily check-ins"""
        return self.list_patients([PatientStatus.ACTIVE, PatientStatus.CRITICAL])

    def delete_patient(self, patient_id: str) -> bool:
        """Delete a patient and their prescriptions"""
        patient = self.get_patient(patient_id)
        if patient is None:
            return False

        prescription_ids = self.redis_client.smembers(f"{self.prescriptions_key}:patient:{patient_id}")
        pipe = self.redis_client.pipeline(transaction=True)
        for prescription_id in prescription_ids:
            pipe.delete(f"{self.prescriptions_key}:{prescription_id}")
            pipe.delete(f"{self.prescriptions_key}:{prescription_id}:reminders")
            pipe.srem(f"{self.prescriptions_key}:all", prescription_id)
        pipe.delete(f"{self.prescriptions_key}:patient:{patient_id}")
        pipe.delete(f"{self.patients_key}:{patient_id}")
        pipe.srem(f"{self.patients_key}:all", patient_id)
        if patient.doctor_id:
            pipe.srem(f"{self.patients_key}:doctor:{patient.doctor_id}", patient_id)
        pipe.execute()

        logger.info(f"Deleted patient {patient_id} and {len(prescription_ids)} prescriptions")
        return True

    # Prescriptions

    def save_prescription(self, prescription: Prescription) -> Prescription:
        if not prescription.medicine_name.strip():
            raise ValidationError("Medicine name is required")
        unknown = set(prescription.frequency) - set(REMINDER_SLOTS)
        if unknown:
            raise ValidationError(f"Unknown reminder slots: {', '.join(sorted(unknown))}")

        pipe = self.redis_client.pipeline(transaction=True)
        pipe.set(f"{self.prescriptions_key}:{prescription.id}", json.dumps(prescription.to_dict()))
        pipe.sadd(f"{self.prescriptions_key}:patient:{prescription.patient_id}", prescription.id)
        pipe.sadd(f"{self.prescriptions_key}:all", prescription.id)
        pipe.execute()
        return prescription

    def get_prescription(self, prescription_id: str) -> Optional[Prescription]:
        raw = self.redis_client.get(f"{self.prescriptions_key}:{prescription_id}")
        if not raw:
            return None
        return Prescription.from_dict(json.loads(raw))

    def list_due_prescriptions(self, slot: str, now: Optional[datetime] = None) -> List[Prescription]:
        """Active prescriptions that include this slot on this day"""
        current_time = now or now_utc()
        due = []
        for prescription_id in sorted(self.redis_client.smembers(f"{self.prescriptions_key}:all")):
            prescription = self.get_prescription(prescription_id)
            if prescription and prescription.is_due(slot, current_time):
                due.append(prescription)
        return due

    def record_reminder(self, prescription_id: str, slot: str, status: str, sent_at: Optional[datetime] = None):
        """Append to a prescription's reminder history"""
        entry = {
            "sent_at": (sent_at or now_utc()).isoformat(),
            "time_slot": slot,
            "status": status,
        }
        self.redis_client.rpush(f"{self.prescriptions_key}:{prescription_id}:reminders", json.dumps(entry))

    def get_reminder_history(self, prescription_id: str) -> List[Dict[str, Any]]:
        raw = self.redis_client.lrange(f"{self.prescriptions_key}:{prescription_id}:reminders", 0, -1)
        return [json.loads(entry) for entry in raw]

    # Once-per-period markers

    def claim_reminder_slot(self, prescription_id: str, slot: str, local_date: str) -> bool:
        """True for the first caller per (prescription, slot, clinic-local day)"""
        return bool(self.redis_client.set(
            f"{self.markers_key}:reminder:{prescription_id}:{slot}:{local_date}",
            "1", nx=True, ex=MARKER_TTL_SECONDS
        ))

    def claim_daily_followup(self, patient_id: str, local_date: str) -> bool:
        """True for the first caller per (patient, clinic-local day)"""
        return bool(self.redis_client.set(
            f"{self.markers_key}:followup:{patient_id}:{local_date}",
            "1", nx=True, ex=MARKER_TTL_SECONDS
        ))
