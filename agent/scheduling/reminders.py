"""
Recurring WhatsApp sweeps - medication reminders per daily slot and daily check-ins
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from config.settings import Settings
from followup.reminder_sender import ReminderSender
from shared.errors import ValidationError
from shared.patients import PatientDirectory, PatientStatus
from utils.time_utils import now_utc, parse_clock, to_local

logger = logging.getLogger("reminder-sweeps")


def current_slot(settings: Settings, now: datetime) -> Optional[str]:
    """The reminder slot whose start lies within the last reminder window, if any"""
    local_now = to_local(now, settings.clinic_timezone)
    window = timedelta(minutes=settings.reminder_window_minutes)
    for slot, clock in settings.reminder_slots.items():
        slot_time = parse_clock(clock)
        start = local_now.replace(hour=slot_time.hour, minute=slot_time.minute, second=0, microsecond=0)
        if timedelta(0) <= local_now - start < window:
            return slot
    return None


class MedicationReminderSweep:
    """Sends each due prescription's reminder once per slot per clinic-local day"""

    def __init__(self, directory: PatientDirectory, sender: ReminderSender, settings: Settings):
        self.directory = directory
        self.sender = sender
        self.settings = settings

    def run(self, slot: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        current_time = now or now_utc()
        if slot is None:
            slot = current_slot(self.settings, current_time)
            if slot is None:
                return {"slot": None, "sent": 0, "failed": 0, "skipped": 0}
        elif slot not in self.settings.reminder_slots:
            raise ValidationError(f"Unknown reminder slot: {slot}")

        local_date = to_local(current_time, self.settings.clinic_timezone).date().isoformat()
        report = {"slot": slot, "sent": 0, "failed": 0, "skipped": 0}

        prescriptions = self.directory.list_due_prescriptions(slot, current_time)
        logger.info(f"Found {len(prescriptions)} prescriptions for {slot} reminders")

        for prescription in prescriptions:
            patient = self.directory.get_patient(prescription.patient_id)
            if patient is None or patient.status == PatientStatus.RECOVERED:
                report["skipped"] += 1
                continue
            if not self.directory.claim_reminder_slot(prescription.id, slot, local_date):
                report["skipped"] += 1
                continue

            try:
                result = self.sender.send_medication_reminder(
                    patient.phone,
                    patient.name,
                    prescription.medicine_name,
                    prescription.dosage,
                    prescription.food_instruction,
                    slot
                )
                status = "sent" if result.get("success") else "failed"
            except Exception as e:
                logger.error(f"Failed to send reminder for {patient.name}: {e}")
                status = "failed"

            self.directory.record_reminder(prescription.id, slot, status, current_time)
            report[status] += 1

        logger.info(f"{slot} reminders: {report['sent']} sent, {report['failed']} failed, {report['skipped']} skipped")
        return report


class DailyFollowUpSweep:
    """Sends the daily check-in question to every Active or Critical patient once per day"""

    def __init__(self, directory: PatientDirectory, sender: ReminderSender, settings: Settings):
        self.directory = directory
        self.sender = sender
        self.settings = settings

    def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        current_time = now or now_utc()
        local_now = to_local(current_time, self.settings.clinic_timezone)
        report = {"sent": 0, "failed": 0, "skipped": 0}

        if local_now.time() < parse_clock(self.settings.daily_followup_time):
            return report

        local_date = local_now.date().isoformat()
        patients = self.directory.list_active_patients()
        logger.info(f"Sending follow-ups to {len(patients)} active patients")

        for patient in patients:
            if not self.directory.claim_daily_followup(patient.id, local_date):
                report["skipped"] += 1
                continue
            try:
                result = self.sender.send_followup_question(patient.phone, patient.name)
                report["sent" if result.get("success") else "failed"] += 1
            except Exception as e:
                logger.error(f"Failed to send follow-up to {patient.name}: {e}")
                report["failed"] += 1

        return report
