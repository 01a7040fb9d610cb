"""
WhatsApp reminders via Twilio - medication reminders and daily check-ins
"""
import logging
from typing import Any, Dict, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from config.settings import Settings
from shared.errors import ValidationError

from .call_business_logic import normalize_phone

logger = logging.getLogger("reminder-sender")


def medication_reminder_text(patient_name: str, medicine_name: str, dosage: str,
                             food_instruction: str, time_slot: str) -> str:
    return (
        "🏥 *PostCare AI - Medication Reminder*\n\n"
        f"Hello {patient_name},\n\n"
        f"It's time for your {time_slot} medication:\n\n"
        f"💊 *{medicine_name}*\n"
        f"📋 Dosage: {dosage}\n"
        f"🍽️ {food_instruction}\n\n"
        "Please take your medicine and reply with:\n"
        "✅ \"Taken\" - if you took it\n"
        "❌ \"Skipped\" - if you skipped\n"
        "🆘 \"Help\" - if you have any issues\n\n"
        "_Your health matters! 💙_"
    )


def daily_followup_text(patient_name: str) -> str:
    return (
        "🏥 *PostCare AI - Daily Check-in*\n\n"
        f"Hello {patient_name},\n\n"
        "How are you feeling today? Please share:\n\n"
        "1️⃣ Pain level (0-10)\n"
        "2️⃣ Any new symptoms?\n"
        "3️⃣ How's your appetite?\n"
        "4️⃣ Any concerns?\n\n"
        "Just type your response naturally, our AI will understand! 🤖\n\n"
        "_Your recovery is our priority! 💙_"
    )


class ReminderSender:
    """Sends WhatsApp messages; failures come back as results, not exceptions"""

    def __init__(self, settings: Settings, client: Optional[Client] = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> Optional[Client]:
        if self._client is None and self.settings.twilio_configured:
            self._client = Client(self.settings.twilio_account_sid, self.settings.twilio_auth_token)
        return self._client

    def send_whatsapp_message(self, to: str, body: str) -> Dict[str, Any]:
        """
        Send a WhatsApp message

        Args:
            to: Recipient phone number as stored on the patient record
            body: Message text

        Returns:
            Dict with success plus sid/status, or message on failure
        """
        client = self._get_client()
        if client is None:
            logger.warning("Twilio client not available. Message not sent.")
            return {"success": False, "message": "Twilio not configured"}
        try:
            number = normalize_phone(to.replace("whatsapp:", "", 1) if to else "", self.settings.default_country_code)
        except ValidationError as e:
            return {"success": False, "message": e.message}

        formatted_to = f"whatsapp:{number}"
        sender = self.settings.twilio_whatsapp_number
        if not sender.startswith("whatsapp:"):
            sender = f"whatsapp:{sender}"

        try:
            message = client.messages.create(body=body, from_=sender, to=formatted_to)
        except TwilioRestException as e:
            logger.error(f"Twilio send error: {e.msg}")
            return {"success": False, "message": e.msg}

        logger.info(f"WhatsApp message sent: {message.sid}")
        return {"success": True, "sid": message.sid, "status": message.status}

    def send_medication_reminder(self, phone: str, patient_name: str, medicine_name: str,
                                 dosage: str, food_instruction: str, time_slot: str) -> Dict[str, Any]:
        body = medication_reminder_text(patient_name, medicine_name, dosage, food_instruction, time_slot)
        return self.send_whatsapp_message(phone, body)

    def send_followup_question(self, phone: str, patient_name: str) -> Dict[str, Any]:
        return self.send_whatsapp_message(phone, daily_followup_text(patient_name))
