"""
Call Summarizer - short clinician-facing summary of a finished call transcript
"""
import hashlib
import logging
from typing import Optional

from shared.errors import PostOpError
from shared.llm import OpenRouterClient

logger = logging.getLogger("call-summarizer")

NOT_CONFIGURED_SUMMARY = "Summary not available (OpenRouter not configured)."
NO_TRANSCRIPT_SUMMARY = "No transcript available."
FAILED_SUMMARY = "Summary generation failed."

MAX_TRANSCRIPT_CHARS = 4000

SUMMARY_PROMPT = """You are a medical assistant. Summarize this call transcript for a doctor in 2-4 sentences.

Focus on:
- What language the patient chose
- Key points discussed (medication reminder, understanding, etc.)
- Patient's response (understood, questions, concerns)
- Any follow-up needed

Patient: {patient_name}

Transcript:
{transcript}

Summary:"""


def transcript_digest(transcript: str) -> str:
    return hashlib.sha256(transcript.encode("utf-8")).hexdigest()[:16]


class CallSummarizer:
    """Returns a placeholder instead of raising when no summary can be made"""

    def __init__(self, llm: Optional[OpenRouterClient]):
        self.llm = llm

    async def summarize(self, transcript: str, patient_name: str = "Patient") -> str:
        if self.llm is None or not self.llm.configured:
            return NOT_CONFIGURED_SUMMARY
        if not (transcript or "").strip():
            return NO_TRANSCRIPT_SUMMARY

        prompt = SUMMARY_PROMPT.format(
            patient_name=patient_name or "Patient",
            transcript=transcript[:MAX_TRANSCRIPT_CHARS],
        )
        try:
            summary = await self.llm.complete(prompt, temperature=0.3)
        except PostOpError as e:
            logger.error(f"Call summary error: {e}")
            return FAILED_SUMMARY

        return summary or FAILED_SUMMARY


async def summarize_call_log(scheduler, summarizer: CallSummarizer, provider_call_id: str) -> Optional[str]:
    """
    Summarize a call log's transcript at most once per transcript

    Args:
        scheduler: CallScheduler holding the call log
        summarizer: CallSummarizer
        provider_call_id: Provider id of the finished call

    Returns:
        The stored summary, or None if nothing was stored
    """
    call_log = scheduler.get_call_log_by_provider_id(provider_call_id)
    if call_log is None:
        logger.warning(f"No call log for provider call {provider_call_id}; skipping summary")
        return None

    transcript = call_log.transcript
    if not transcript.strip():
        return None

    if not scheduler.claim_summary(call_log.id, transcript_digest(transcript)):
        logger.info(f"Summary for call log {call_log.id} already generated for this transcript")
        return None

    summary = await summarizer.summarize(transcript, call_log.patient_name)
    if not scheduler.store_summary(call_log, transcript, summary):
        return None

    logger.info(f"Stored summary for call log {call_log.id}")
    return summary
