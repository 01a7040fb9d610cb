"""
Tests for call summaries
"""
import pytest

from followup.call_summarizer import (
    FAILED_SUMMARY, MAX_TRANSCRIPT_CHARS, NO_TRANSCRIPT_SUMMARY, NOT_CONFIGURED_SUMMARY,
    CallSummarizer, summarize_call_log, transcript_digest
)
from shared.errors import ProviderError

from conftest import StubLLM

TRANSCRIPT = "AI: Hello Ravi, which language?\nUser: Telugu\nAI: Please take your tablet.\nUser: OK"


class TestCallSummarizer:
    """Tests for CallSummarizer.summarize"""

    @pytest.mark.asyncio
    async def test_summary(self):
        llm = StubLLM(["Patient chose Telugu and confirmed the reminder."])
        summary = await CallSummarizer(llm).summarize(TRANSCRIPT, "Ravi Kumar")

        assert summary == "Patient chose Telugu and confirmed the reminder."
        assert "Patient: Ravi Kumar" in llm.prompts[0]
        assert TRANSCRIPT in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_long_transcript_truncated(self):
        llm = StubLLM(["ok"])
        await CallSummarizer(llm).summarize("x" * (MAX_TRANSCRIPT_CHARS + 500))
        assert "x" * MAX_TRANSCRIPT_CHARS in llm.prompts[0]
        assert "x" * (MAX_TRANSCRIPT_CHARS + 1) not in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_placeholders(self):
        assert await CallSummarizer(StubLLM(configured=False)).summarize(TRANSCRIPT) == NOT_CONFIGURED_SUMMARY
        assert await CallSummarizer(None).summarize(TRANSCRIPT) == NOT_CONFIGURED_SUMMARY
        assert await CallSummarizer(StubLLM()).summarize("  ") == NO_TRANSCRIPT_SUMMARY
        assert await CallSummarizer(StubLLM([ProviderError("boom")])).summarize(TRANSCRIPT) == FAILED_SUMMARY
        assert await CallSummarizer(StubLLM([""])).summarize(TRANSCRIPT) == FAILED_SUMMARY

    def test_digest_is_stable(self):
        assert transcript_digest(TRANSCRIPT) == transcript_digest(TRANSCRIPT)
        assert transcript_digest(TRANSCRIPT) != transcript_digest(TRANSCRIPT + "!")
        assert len(transcript_digest(TRANSCRIPT)) == 16


class TestSummarizeCallLog:
    """Tests for the once-per-transcript summary flow"""

    @pytest.mark.asyncio
    async def test_summarized_once(self, call_scheduler, sample_call_log):
        sample_call_log.transcript = TRANSCRIPT
        call_scheduler.create_call_log(sample_call_log)
        llm = StubLLM(["First summary", "Second summary"])
        summarizer = CallSummarizer(llm)

        assert await summarize_call_log(call_scheduler, summarizer, "vapi-call-1") == "First summary"
        assert await summarize_call_log(call_scheduler, summarizer, "vapi-call-1") is None

        assert call_scheduler.get_call_log("log-1").summary == "First summary"
        assert len(llm.prompts) == 1

    @pytest.mark.asyncio
    async def test_unknown_call_or_empty_transcript(self, call_scheduler, sample_call_log):
        call_scheduler.create_call_log(sample_call_log)
        llm = StubLLM(["unused"])

        assert await summarize_call_log(call_scheduler, CallSummarizer(llm), "missing") is None
        assert await summarize_call_log(call_scheduler, CallSummarizer(llm), "vapi-call-1") is None
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_stale_summary_discarded(self, call_scheduler, sample_call_log):
        sample_call_log.transcript = TRANSCRIPT
        call_scheduler.create_call_log(sample_call_log)

        class RacingLLM(StubLLM):
            async def complete(self, prompt, temperature=0.3):
                # A newer end-of-call report lands while the summary is generated
                newer = call_scheduler.get_call_log("log-1")
                newer.transcript = TRANSCRIPT + "\nUser: One more thing"
                call_scheduler.save_call_log(newer)
                return "Summary of the old transcript"

        result = await summarize_call_log(call_scheduler, CallSummarizer(RacingLLM()), "vapi-call-1")

        assert result is None
        assert call_scheduler.get_call_log("log-1").summary == ""
