"""
Time Resolver - turns "today 6 35 pm" or an ISO timestamp into a future UTC instant
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from config.settings import Settings
from shared.errors import ParseError, ValidationError
from shared.llm import OpenRouterClient, extract_json_object
from utils.time_utils import (
    format_schedule_label, now_utc, parse_iso_to_utc, to_local, to_utc, truncate_to_minute
)

logger = logging.getLogger("time-resolver")

PARSE_PROMPT = """You are a schedule parser. Parse natural language time into a future datetime.
Current date/time: {local_now}
Today: {today}
Timezone: {timezone}

Examples (output datetime in YYYY-MM-DDTHH:mm:ss, 24-hour, local time):
- "today 6 35 am" or "today 06 35 am" -> 6:35 AM today
- "today 6 35 pm" or "today 06 35 pm" -> 6:35 PM today (18:35)
- "today 8 am" -> 8:00 AM today
- "today 8 pm" -> 8:00 PM today (20:00)
- "tomorrow 9 am" -> 9:00 AM tomorrow
- "tomorrow 6 30 pm" -> 6:30 PM tomorrow

User input: "{user_input}"

Respond with ONLY this JSON, no other text:
{{"datetime":"YYYY-MM-DDTHH:mm:ss","label":"e.g. Today 6:35 PM"}}"""


@dataclass
class ResolvedTime:
    """A resolved schedule time"""
    scheduled_at: datetime
    label: str
    local_iso: str

    def to_public_dict(self) -> dict:
        return {
            "scheduledAt": self.scheduled_at.isoformat(),
            "label": self.label,
            "datetimeLocal": self.local_iso,
        }


def _looks_like_iso(value: str) -> bool:
    return len(value) >= 10 and value[4] == "-" and value[7] == "-" and value[:4].isdigit()


class TimeResolver:
    """
    Resolves explicit or natural-language times against the clinic timezone.

    Explicit ISO values are parsed locally. Anything else goes to the LLM,
    whose answer is accepted only if it names a whole minute strictly after
    now. Nothing ever defaults to the current time.
    """

    def __init__(self, settings: Settings, llm: OpenRouterClient):
        self.settings = settings
        self.llm = llm

    async def resolve(self, value: str, now: Optional[datetime] = None) -> ResolvedTime:
        text = (value or "").strip()
        if not text:
            raise ValidationError("A schedule time is required")

        current_time = now or now_utc()

        if _looks_like_iso(text):
            try:
                scheduled_at = parse_iso_to_utc(text, self.settings.clinic_timezone)
            except ValueError:
                raise ParseError(f"Invalid datetime: {text}")
            label = None
        else:
            scheduled_at, label = await self._resolve_natural(text, current_time)

        return self._finalize(scheduled_at, label, current_time)

    async def _resolve_natural(self, text: str, current_time: datetime):
        local_now = to_local(current_time, self.settings.clinic_timezone)
        prompt = PARSE_PROMPT.format(
            local_now=local_now.strftime("%Y-%m-%dT%H:%M:%S"),
            today=local_now.strftime("%Y-%m-%d (%A)"),
            timezone=self.settings.clinic_timezone,
            user_input=text,
        )

        content = await self.llm.complete(prompt, temperature=0.1)
        if not content:
            raise ParseError("No response from time parser")

        try:
            parsed = extract_json_object(content)
        except ValueError:
            raise ParseError("Invalid response format")

        raw_datetime = parsed.get("datetime")
        if not raw_datetime or not isinstance(raw_datetime, str):
            raise ParseError("No datetime in response")

        # Model answers in clinic-local wall time; seconds are dropped
        try:
            local_dt = datetime.fromisoformat(raw_datetime.strip()[:16])
        except ValueError:
            raise ParseError("Invalid datetime")

        logger.info(f"Parsed '{text}' -> {local_dt.isoformat()} ({self.settings.clinic_timezone})")
        return to_utc(local_dt.replace(tzinfo=None), self.settings.clinic_timezone), parsed.get("label")

    def _finalize(self, scheduled_at: datetime, label: Optional[str], current_time: datetime) -> ResolvedTime:
        scheduled_at = truncate_to_minute(scheduled_at)
        if scheduled_at <= current_time:
            raise ParseError("Time must be in the future")

        local_dt = to_local(scheduled_at, self.settings.clinic_timezone)
        return ResolvedTime(
            scheduled_at=scheduled_at,
            label=label or format_schedule_label(scheduled_at, self.settings.clinic_timezone, current_time),
            local_iso=local_dt.strftime("%Y-%m-%dT%H:%M"),
        )
