"""
Tests for WhatsApp medication reminders and daily check-ins
"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from twilio.base.exceptions import TwilioRestException

from followup.reminder_sender import ReminderSender, daily_followup_text, medication_reminder_text
from scheduling.reminders import DailyFollowUpSweep, MedicationReminderSweep, current_slot
from shared.errors import ValidationError
from shared.patients import Patient, PatientStatus, Prescription

from conftest import NOW

# 08:20 in Asia/Kolkata
MORNING = datetime(2025, 1, 15, 2, 50, tzinfo=timezone.utc)


def add_prescription(directory, prescription_id="rx-1", patient_id="patient-1", medicine="Paracetamol"):
    return directory.save_prescription(Prescription(
        id=prescription_id,
        patient_id=patient_id,
        medicine_name=medicine,
        dosage="500mg",
        frequency={"morning": True, "evening": True},
        start_date=NOW - timedelta(days=2),
        end_date=NOW + timedelta(days=5),
    ))


@pytest.fixture
def sender():
    sender = Mock()
    sender.send_medication_reminder.return_value = {"success": True, "sid": "SM1"}
    sender.send_followup_question.return_value = {"success": True, "sid": "SM2"}
    return sender


class TestReminderSender:
    """Tests for ReminderSender with a mocked Twilio client"""

    def test_sends_whatsapp_message(self, settings):
        client = Mock()
        client.messages.create.return_value = Mock(sid="SM123", status="queued")

        result = ReminderSender(settings, client=client).send_whatsapp_message("+919876543210", "Hello")

        assert result == {"success": True, "sid": "SM123", "status": "queued"}
        client.messages.create.assert_called_once_with(
            body="Hello", from_="whatsapp:+14155238886", to="whatsapp:+919876543210"
        )

    @pytest.mark.parametrize("stored, recipient", [
        ("98765 43210", "whatsapp:+919876543210"),
        ("098765-43210", "whatsapp:+919876543210"),
        ("whatsapp:0044 20 7946 0958", "whatsapp:+442079460958"),
    ])
    def test_recipient_is_normalized(self, settings, stored, recipient):
        client = Mock()
        client.messages.create.return_value = Mock(sid="SM123", status="queued")

        ReminderSender(settings, client=client).send_whatsapp_message(stored, "Hello")

        assert client.messages.create.call_args.kwargs["to"] == recipient

    def test_blank_phone_is_a_failed_result(self, settings):
        client = Mock()

        result = ReminderSender(settings, client=client).send_whatsapp_message("  ", "Hello")

        assert result == {"success": False, "message": "Patient has no phone number"}
        client.messages.create.assert_not_called()

    def test_twilio_error_is_a_failed_result(self, settings):
        client = Mock()
        client.messages.create.side_effect = TwilioRestException(
            400, "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json", msg="Invalid To number"
        )

        result = ReminderSender(settings, client=client).send_whatsapp_message("+91000", "Hello")
        assert result == {"success": False, "message": "Invalid To number"}

    def test_not_configured(self, unconfigured_settings):
        result = ReminderSender(unconfigured_settings).send_whatsapp_message("+919876543210", "Hello")
        assert result["success"] is False
        assert result["message"] == "Twilio not configured"

    def test_message_texts(self):
        reminder = medication_reminder_text("Ravi", "Paracetamol", "500mg", "After food", "morning")
        assert "morning medication" in reminder
        assert "*Paracetamol*" in reminder
        assert "Hello Ravi" in daily_followup_text("Ravi")


class TestCurrentSlot:
    """Tests for choosing the reminder slot"""

    def test_inside_window(self, settings):
        assert current_slot(settings, MORNING) == "morning"

    def test_outside_every_window(self, settings):
        assert current_slot(settings, NOW) is None


class TestMedicationReminderSweep:
    """Tests for MedicationReminderSweep"""

    def test_sends_once_per_slot_per_day(self, directory, patient, sender, settings):
        add_prescription(directory)
        sweep = MedicationReminderSweep(directory, sender, settings)

        first = sweep.run(now=MORNING)
        second = sweep.run(now=MORNING + timedelta(minutes=10))

        assert first == {"slot": "morning", "sent": 1, "failed": 0, "skipped": 0}
        assert second == {"slot": "morning", "sent": 0, "failed": 0, "skipped": 1}
        sender.send_medication_reminder.assert_called_once_with(
            "98765 43210", "Ravi Kumar", "Paracetamol", "500mg", "After food", "morning"
        )
        assert [h["status"] for h in directory.get_reminder_history("rx-1")] == ["sent"]

        # Next clinic day sends again
        assert sweep.run(now=MORNING + timedelta(days=1))["sent"] == 1

    def test_recovered_patients_skipped(self, directory, sender, settings):
        directory.save_patient(Patient(id="patient-1", name="Ravi", phone="1", status=PatientStatus.RECOVERED))
        add_prescription(directory)

        report = MedicationReminderSweep(directory, sender, settings).run("morning", MORNING)

        assert report["skipped"] == 1
        sender.send_medication_reminder.assert_not_called()

    def test_failures_recorded_and_isolated(self, directory, patient, sender, settings):
        directory.save_patient(Patient(id="patient-2", name="Asha", phone="+919000000000"))
        add_prescription(directory, "rx-1", "patient-1")
        add_prescription(directory, "rx-2", "patient-2")
        sender.send_medication_reminder.side_effect = [
            RuntimeError("network down"), {"success": True, "sid": "SM3"}
        ]

        report = MedicationReminderSweep(directory, sender, settings).run("evening", MORNING)

        assert report == {"slot": "evening", "sent": 1, "failed": 1, "skipped": 0}
        assert directory.get_reminder_history("rx-1")[0]["status"] == "failed"
        assert directory.get_reminder_history("rx-2")[0]["status"] == "sent"

    def test_unknown_slot(self, directory, sender, settings):
        with pytest.raises(ValidationError):
            MedicationReminderSweep(directory, sender, settings).run("midnight", MORNING)

    def test_no_slot_due(self, directory, patient, sender, settings):
        add_prescription(directory)
        report = MedicationReminderSweep(directory, sender, settings).run(now=NOW)

        assert report["slot"] is None
        sender.send_medication_reminder.assert_not_called()


class TestDailyFollowUpSweep:
    """Tests for DailyFollowUpSweep"""

    def test_waits_for_followup_time(self, directory, patient, sender, settings):
        report = DailyFollowUpSweep(directory, sender, settings).run(MORNING)

        assert report == {"sent": 0, "failed": 0, "skipped": 0}
        sender.send_followup_question.assert_not_called()

    def test_once_per_active_patient_per_day(self, directory, patient, sender, settings):
        directory.save_patient(Patient(id="p-recovered", name="Venu", phone="1", status=PatientStatus.RECOVERED))
        sweep = DailyFollowUpSweep(directory, sender, settings)

        assert sweep.run(NOW) == {"sent": 1, "failed": 0, "skipped": 0}
        assert sweep.run(NOW + timedelta(hours=1)) == {"sent": 0, "failed": 0, "skipped": 1}
        sender.send_followup_question.assert_called_once_with("98765 43210", "Ravi Kumar")

    def test_failed_send_counted(self, directory, patient, sender, settings):
        sender.send_followup_question.return_value = {"success": False, "message": "Twilio not configured"}
        assert DailyFollowUpSweep(directory, sender, settings).run(NOW)["failed"] == 1
