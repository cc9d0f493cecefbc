"""OpenAI LLM provider implementation."""

import logging
from typing import Any

from booth_beacon.core.errors import ExtractionUnavailableError
from booth_beacon.services.ai.client import LLMClient, LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
MAX_TOKENS = 16000


class OpenAIClient(LLMClient):
    """OpenAI GPT LLM client using JSON object mode."""

    provider = LLMProvider.OPENAI

    def __init__(self, api_key: str, model: str | None = None):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key.
            model: Model name (defaults to gpt-4o).
        """
        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package is required. Install with: pip install openai"
            )

        self._openai = openai
        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model or DEFAULT_MODEL

    async def extract(
        self,
        prompt: str,
        schema: dict[str, Any],
        system: str | None = None,
    ) -> str:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                temperature=0.0,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except self._openai.OpenAIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise ExtractionUnavailableError(f"OpenAI API error: {e}") from e

        raw_response = response.choices[0].message.content or ""
        logger.debug(f"Raw LLM response: {raw_response[:500]}...")
        return raw_response
