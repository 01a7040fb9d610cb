"""
Followup package for the PostCare follow-up system

Contains the outbound side of a follow-up call:
- VoiceCallGateway: Places calls through Vapi
- MessageLocalizer: Native-script variants of a reminder
- CallOutcomeRecorder: Applies provider webhooks to call logs
- CallSummarizer: Clinician summary of a finished call
- ReminderSender: WhatsApp medication reminders and daily check-ins
"""

from .call_executor import VoiceCallGateway
from .call_business_logic import CallResult
from .message_localizer import MessageLocalizer
from .outcome_recorder import CallOutcomeRecorder
from .call_summarizer import CallSummarizer
from .reminder_sender import ReminderSender

__all__ = [
    'VoiceCallGateway',
    'CallResult',
    'MessageLocalizer',
    'CallOutcomeRecorder',
    'CallSummarizer',
    'ReminderSender'
]
