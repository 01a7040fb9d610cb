"""
Application settings for the PostCare scheduling system

Provider credentials and scheduling knobs are read once from the environment
(after loading agent/.env) into a Settings object that is passed explicitly to
every component. Tests build Settings directly with fake or missing values.
"""
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger("postop-settings")

# Look for .env in the agent directory (parent of this config directory)
AGENT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DOTENV_PATH = os.path.join(AGENT_DIR, '.env')

# Medication reminder slots in clinic-local time
DEFAULT_REMINDER_SLOTS = {
    "morning": "08:00",
    "afternoon": "13:00",
    "evening": "20:00",
}


@dataclass
class Settings:
    """Explicit configuration for every scheduling component"""

    # OpenRouter (time parsing, translation, summaries)
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = "openai/gpt-4o-mini"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    app_url: str = "https://postcare.ai"

    # Vapi voice AI
    vapi_api_key: Optional[str] = None
    vapi_assistant_id: Optional[str] = None
    vapi_phone_number_id: Optional[str] = None
    vapi_base_url: str = "https://api.vapi.ai"

    # Twilio WhatsApp (medication reminders, daily check-ins)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_whatsapp_number: Optional[str] = None

    # Localization
    clinic_timezone: str = "Asia/Kolkata"
    default_country_code: str = "+91"
    source_language: str = "english"
    target_languages: Tuple[str, ...] = ("telugu", "hindi")

    # Dispatching
    dispatch_interval_seconds: int = 60
    dispatch_batch_size: int = 50
    dispatch_concurrency: int = 5
    external_call_timeout_seconds: float = 20.0
    claim_lease_seconds: int = 300

    # Reminder sweeps
    reminder_slots: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_REMINDER_SLOTS))
    reminder_window_minutes: int = 60
    daily_followup_time: str = "10:00"

    def __post_init__(self):
        # A whole batch must be dialed before the first claim's lease can lapse
        rounds = math.ceil(self.dispatch_batch_size / max(self.dispatch_concurrency, 1))
        budget = rounds * self.external_call_timeout_seconds
        if self.claim_lease_seconds < budget:
            raise ValueError(
                f"CLAIM_LEASE_SECONDS={self.claim_lease_seconds} is shorter than one dispatch batch "
                f"({rounds} rounds x {self.external_call_timeout_seconds:g}s = {budget:g}s); "
                f"raise it or lower DISPATCH_BATCH_SIZE"
            )

    @property
    def languages(self) -> List[str]:
        """Source language followed by every target language"""
        return [self.source_language] + [
            lang for lang in self.target_languages if lang != self.source_language
        ]

    def missing_vapi_settings(self) -> List[str]:
        """Names of the Vapi environment variables that are not set"""
        missing = []
        if not self.vapi_api_key:
            missing.append("VAPI_PRIVATE_KEY")
        if not self.vapi_assistant_id:
            missing.append("VAPI_ASSISTANT_ID")
        if not self.vapi_phone_number_id:
            missing.append("VAPI_PHONE_NUMBER_ID")
        return missing

    @property
    def llm_configured(self) -> bool:
        return bool(self.openrouter_api_key)

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_number)


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())


def load_settings(dotenv_path: str = DOTENV_PATH) -> Settings:
    """Load environment variables (from .env if present) into a Settings object"""
    env_loaded = load_dotenv(dotenv_path)
    logger.debug(f"Environment loading: .env path={dotenv_path}, loaded={env_loaded}")

    settings = Settings(
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY"),
        openrouter_model=os.getenv("OPENROUTER_MODEL", "openai/gpt-4o-mini"),
        openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
        app_url=os.getenv("APP_URL", "https://postcare.ai"),
        vapi_api_key=os.getenv("VAPI_PRIVATE_KEY") or os.getenv("VAPI_API_KEY"),
        vapi_assistant_id=os.getenv("VAPI_ASSISTANT_ID"),
        vapi_phone_number_id=os.getenv("VAPI_PHONE_NUMBER_ID"),
        vapi_base_url=os.getenv("VAPI_BASE_URL", "https://api.vapi.ai"),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
        twilio_whatsapp_number=os.getenv("TWILIO_WHATSAPP_NUMBER"),
        clinic_timezone=os.getenv("CLINIC_TIMEZONE", "Asia/Kolkata"),
        default_country_code=os.getenv("DEFAULT_COUNTRY_CODE", "+91"),
        source_language=os.getenv("SOURCE_LANGUAGE", "english").strip().lower(),
        target_languages=_split_list(os.getenv("TARGET_LANGUAGES", "telugu,hindi")),
        dispatch_interval_seconds=int(os.getenv("DISPATCH_INTERVAL_SECONDS", "60")),
        dispatch_batch_size=int(os.getenv("DISPATCH_BATCH_SIZE", "50")),
        dispatch_concurrency=int(os.getenv("DISPATCH_CONCURRENCY", "5")),
        external_call_timeout_seconds=float(os.getenv("EXTERNAL_CALL_TIMEOUT_SECONDS", "20")),
        claim_lease_seconds=int(os.getenv("CLAIM_LEASE_SECONDS", "300")),
        reminder_window_minutes=int(os.getenv("REMINDER_WINDOW_MINUTES", "60")),
        daily_followup_time=os.getenv("DAILY_FOLLOWUP_TIME", "10:00"),
    )

    # Log configuration status without exposing credentials
    missing = settings.missing_vapi_settings()
    if missing:
        logger.info(f"Vapi configuration incomplete - Missing: {', '.join(missing)}")
    if not settings.llm_configured:
        logger.info("OPENROUTER_API_KEY not set - translation and summaries will use fallbacks")
    if not settings.twilio_configured:
        logger.info("Twilio WhatsApp not configured - reminders will be recorded as failed")

    return settings
