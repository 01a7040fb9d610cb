"""
OpenRouter chat-completion client shared by time parsing, translation and
call summaries.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

import httpx
import openai

from config.settings import Settings
from shared.errors import ConfigurationError, ProviderError

logger = logging.getLogger("openrouter-client")

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pull the first JSON object out of a model reply (tolerates markdown fences)

    Raises:
        ValueError: If the reply holds no parseable JSON object
    """
    match = JSON_OBJECT_PATTERN.search(text or "")
    if not match:
        raise ValueError("Invalid response format")
    parsed = json.loads(match.group(0))
    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed


class OpenRouterClient:
    """Thin async wrapper around the OpenAI SDK pointed at OpenRouter"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 20.0):
        self.settings = settings
        self.model = settings.openrouter_model
        self._http_client = http_client
        self._timeout = timeout
        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def configured(self) -> bool:
        return self.settings.llm_configured

    def _get_client(self) -> openai.AsyncOpenAI:
        if not self.configured:
            raise ConfigurationError(
                "OPENROUTER_API_KEY not configured",
                hint="Add OPENROUTER_API_KEY to .env"
            )
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self.settings.openrouter_api_key,
                base_url=self.settings.openrouter_base_url,
                default_headers={"HTTP-Referer": self.settings.app_url},
                timeout=self._timeout,
                max_retries=1,
                http_client=self._http_client,
            )
        return self._client

    async def complete(self, prompt: str, temperature: float = 0.3) -> str:
        """
        Send a single-user-message chat completion

        Returns:
            The stripped reply text (may be empty)

        Raises:
            ConfigurationError: No API key
            ProviderError: Transport or API failure
        """
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
            )
        except openai.APIError as e:
            logger.error(f"OpenRouter request failed: {e}")
            raise ProviderError(f"OpenRouter request failed: {e}") from e

        if not response.choices:
            return ""
        content = response.choices[0].message.content
        return (content or "").strip()
