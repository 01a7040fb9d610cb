"""
Shared utilities package for the PostCare scheduling system

Contains shared pieces used by scheduling and follow-up:
- errors: Error taxonomy mapped to API responses
- llm: OpenRouter chat-completion client
- patients: Patient and prescription directory
"""

from .errors import (
    PostOpError, ValidationError, ParseError, ConfigurationError,
    ProviderError, InvalidStateError, NotFoundError
)
from .llm import OpenRouterClient, extract_json_object
from .patients import Patient, PatientStatus, Prescription, PatientDirectory, REMINDER_SLOTS

__all__ = [
    'PostOpError',
    'ValidationError',
    'ParseError',
    'ConfigurationError',
    'ProviderError',
    'InvalidStateError',
    'NotFoundError',
    'OpenRouterClient',
    'extract_json_object',
    'Patient',
    'PatientStatus',
    'Prescription',
    'PatientDirectory',
    'REMINDER_SLOTS',
]
