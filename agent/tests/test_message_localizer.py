"""
Tests for message localization
"""
import json
import pytest

from config.settings import Settings
from followup.message_localizer import MessageLocalizer, build_translation_prompt, has_native_script
from shared.errors import ProviderError

from conftest import StubLLM

TELUGU = "మీ మందు రాత్రి 8 గంటలకు తీసుకోండి"
HINDI = "अपनी दवा रात 8 बजे लीजिए"
ENGLISH = "Take your medicine at 8 pm"


class TestNativeScript:
    """Tests for the native-script check"""

    def test_native_script_detected(self):
        assert has_native_script(TELUGU, "telugu")
        assert has_native_script(HINDI, "hindi")

    def test_romanized_text_rejected(self):
        assert not has_native_script("Mee mandu tesukondi", "telugu")
        assert not has_native_script(HINDI, "telugu")

    def test_languages_without_known_script_pass(self):
        assert has_native_script("Toma tu medicina", "spanish")

    def test_prompt_lists_every_language(self):
        prompt = build_translation_prompt(ENGLISH, "english", ["telugu", "hindi"])
        assert '"english":"..."' in prompt
        assert '"telugu":"..."' in prompt
        assert "Devanagari" in prompt
        assert ENGLISH in prompt


class TestMessageLocalizer:
    """Localization never fails; each slot falls back to the original"""

    @pytest.mark.asyncio
    async def test_translations_used(self, settings):
        llm = StubLLM([json.dumps({"english": ENGLISH, "telugu": TELUGU, "hindi": HINDI}, ensure_ascii=False)])
        variants = await MessageLocalizer(settings, llm).localize(f"  {ENGLISH}  ")

        assert variants == {"english": ENGLISH, "telugu": TELUGU, "hindi": HINDI}
        assert llm.prompts

    @pytest.mark.asyncio
    async def test_romanized_slot_falls_back(self, settings):
        llm = StubLLM([json.dumps({"telugu": "Mee mandu", "hindi": HINDI}, ensure_ascii=False)])
        variants = await MessageLocalizer(settings, llm).localize(ENGLISH)

        assert variants["telugu"] == ENGLISH
        assert variants["hindi"] == HINDI

    @pytest.mark.asyncio
    async def test_missing_slot_falls_back(self, settings):
        llm = StubLLM([json.dumps({"telugu": TELUGU}, ensure_ascii=False)])
        variants = await MessageLocalizer(settings, llm).localize(ENGLISH)
        assert variants["hindi"] == ENGLISH

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [ProviderError("OpenRouter request failed"), "not json", ""])
    async def test_failures_return_original_everywhere(self, settings, reply):
        variants = await MessageLocalizer(settings, StubLLM([reply])).localize(ENGLISH)
        assert variants == {"english": ENGLISH, "telugu": ENGLISH, "hindi": ENGLISH}

    @pytest.mark.asyncio
    async def test_unconfigured_llm_skips_translation(self, settings):
        llm = StubLLM(configured=False)
        variants = await MessageLocalizer(settings, llm).localize(ENGLISH)

        assert variants == {"english": ENGLISH, "telugu": ENGLISH, "hindi": ENGLISH}
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_source_only_configuration(self):
        settings = Settings(openrouter_api_key="key", target_languages=())
        llm = StubLLM()
        assert await MessageLocalizer(settings, llm).localize(ENGLISH) == {"english": ENGLISH}
        assert llm.prompts == []
