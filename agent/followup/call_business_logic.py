"""
Business logic for call origination - pure functions with no external dependencies

These functions contain the core business logic for placing calls,
separated from infrastructure concerns for easier testing.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.errors import ValidationError

logger = logging.getLogger("call-business-logic")

DEFAULT_REMINDER_TEXT = "Please take your medication as prescribed."

PHONE_FORMATTING = re.compile(r"[\s\-().]")


@dataclass
class CallResult:
    """Result of a call origination attempt"""
    success: bool
    provider_call_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # "configuration" | "provider" | "timeout"
    hint: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def normalize_phone(phone: str, default_country_code: str = "+91") -> str:
    """
    Normalize a patient phone number to E.164-style for the provider

    Args:
        phone: Number as stored on the patient record
        default_country_code: Prefix for numbers without a country code

    Returns:
        The normalized number

    Raises:
        ValidationError: If the number is empty
    """
    number = PHONE_FORMATTING.sub("", (phone or "").strip())
    if not number:
        raise ValidationError("Patient has no phone number")

    if number.startswith("+"):
        return number
    if number.startswith("00"):
        return "+" + number[2:]
    if number.startswith("0"):
        return default_country_code + number[1:]
    return default_country_code + number


def build_variable_values(variants: Dict[str, str], languages: List[str], source_language: str) -> Dict[str, str]:
    """
    Assistant variables, one per language

    Empty variants fall back to the source text, then to a default reminder.
    """
    source_text = (variants.get(source_language) or "").strip() or DEFAULT_REMINDER_TEXT
    values = {}
    for lang in languages:
        values[lang] = (variants.get(lang) or "").strip() or source_text
    return values


def missing_settings_error(missing: List[str]) -> str:
    return f"VAPI not configured: missing {', '.join(missing)}"


def missing_settings_hint(missing: List[str]) -> str:
    """Actionable hints for every missing Vapi setting, in order"""
    hints = {
        "VAPI_PRIVATE_KEY": "Add VAPI_PRIVATE_KEY to .env: get it from VAPI Dashboard → API Keys",
        "VAPI_ASSISTANT_ID": "Add VAPI_ASSISTANT_ID to .env: get it from VAPI Dashboard → Assistants",
        "VAPI_PHONE_NUMBER_ID": "Add VAPI_PHONE_NUMBER_ID to .env: get it from VAPI Dashboard → Phone Numbers",
    }
    return " ".join(hints[name] for name in missing if name in hints)


def create_success_result(provider_call: Dict[str, Any]) -> CallResult:
    """
    Create result for a call the provider accepted

    Args:
        provider_call: Call object returned by the provider

    Returns:
        Successful CallResult
    """
    return CallResult(success=True, provider_call_id=provider_call.get("id"), raw=provider_call)


def create_failure_result(
    error: str,
    error_kind: str = "provider",
    hint: Optional[str] = None,
    raw: Optional[Dict[str, Any]] = None
) -> CallResult:
    """
    Create result for a failed call

    Args:
        error: Human-readable error
        error_kind: configuration, provider or timeout
        hint: Optional remediation hint
        raw: Provider response body, if any

    Returns:
        Failed CallResult
    """
    return CallResult(success=False, error=error, error_kind=error_kind, hint=hint, raw=raw or {})
