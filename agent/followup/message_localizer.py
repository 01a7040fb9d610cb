"""
Message Localizer - best-effort translation of a reminder into native-script variants
"""
import logging
from typing import Dict, Optional

from config.settings import Settings
from shared.errors import PostOpError
from shared.llm import OpenRouterClient, extract_json_object

logger = logging.getLogger("message-localizer")

# Unicode blocks a translation must use to count as native script
NATIVE_SCRIPTS = {
    "telugu": (0x0C00, 0x0C7F),
    "hindi": (0x0900, 0x097F),
    "marathi": (0x0900, 0x097F),
    "tamil": (0x0B80, 0x0BFF),
    "kannada": (0x0C80, 0x0CFF),
}

SCRIPT_EXAMPLES = {
    "telugu": "Telugu script (e.g. మీ మందు రాత్రి 8 గంటలకు తీసుకోండి)",
    "hindi": "Devanagari script (e.g. अपनी दवा रात 8 बजे लीजिए)",
}


def has_native_script(text: str, language: str) -> bool:
    """True when the language has no known script or the text uses it"""
    block = NATIVE_SCRIPTS.get(language)
    if block is None:
        return True
    low, high = block
    return any(low <= ord(char) <= high for char in text)


def build_translation_prompt(message: str, source_language: str, languages) -> str:
    names = " and ".join(f"natural {lang.title()}" for lang in languages)
    script_lines = "\n".join(
        f"- {lang.title()}: Use {SCRIPT_EXAMPLES.get(lang, lang.title() + ' native script')}"
        for lang in languages
    )
    keys = ",".join(f'"{lang}":"..."' for lang in [source_language, *languages])
    return f"""Translate the following medical reminder message into {names}.

IMPORTANT: Use NATIVE script only - NOT romanized/pronunciation.
{script_lines}

{source_language.title()} message:
"{message}"

Respond with ONLY a valid JSON object, no other text:
{{{keys}}}"""


class MessageLocalizer:
    """Produces one variant per configured language; never raises"""

    def __init__(self, settings: Settings, llm: Optional[OpenRouterClient]):
        self.settings = settings
        self.llm = llm

    def _fallback(self, message: str) -> Dict[str, str]:
        return {lang: message for lang in self.settings.languages}

    async def localize(self, message: str) -> Dict[str, str]:
        """
        Translate a source-language message

        Returns:
            Dict with the trimmed original under the source-language key and
            one entry per target language (the original where translation failed)
        """
        text = (message or "").strip()
        variants = self._fallback(text)
        targets = [lang for lang in self.settings.languages if lang != self.settings.source_language]

        if not text or not targets:
            return variants
        if self.llm is None or not self.llm.configured:
            logger.warning("OpenRouter not configured: using the original message for every language")
            return variants

        prompt = build_translation_prompt(text, self.settings.source_language, targets)
        try:
            content = await self.llm.complete(prompt, temperature=0.3)
            parsed = extract_json_object(content)
        except (PostOpError, ValueError) as e:
            logger.error(f"Translation error: {e}")
            return variants

        for lang in targets:
            translated = parsed.get(lang)
            if not isinstance(translated, str) or not translated.strip():
                logger.warning(f"No {lang} translation returned; using original text")
                continue
            translated = translated.strip()
            if not has_native_script(translated, lang):
                logger.warning(f"{lang} translation is not in native script; using original text")
                continue
            variants[lang] = translated

        return variants
