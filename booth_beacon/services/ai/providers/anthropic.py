"""Anthropic (Claude) LLM provider implementation."""

import json
import logging
from typing import Any

from booth_beacon.core.errors import ExtractionUnavailableError
from booth_beacon.services.ai.client import LLMClient, LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_TOKENS = 16000
EXTRACTION_TOOL_NAME = "extract_photo_booths"


class AnthropicClient(LLMClient):
    """
    Anthropic Claude LLM client.

    Structured output is requested through a forced tool call whose input
    schema is the extraction schema.
    """

    provider = LLMProvider.ANTHROPIC

    def __init__(self, api_key: str, model: str | None = None):
        """
        Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key.
            model: Model name (defaults to claude-sonnet-4-20250514).
        """
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package is required. Install with: pip install anthropic"
            )

        self._anthropic = anthropic
        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model or DEFAULT_MODEL

    async def extract(
        self,
        prompt: str,
        schema: dict[str, Any],
        system: str | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {}
        if system:
            kwargs["system"] = system

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                temperature=0.0,
                messages=[{"role": "user", "content": prompt}],
                tools=[
                    {
                        "name": EXTRACTION_TOOL_NAME,
                        "description": "Record every photo booth location found in the content",
                        "input_schema": schema,
                    }
                ],
                tool_choice={"type": "tool", "name": EXTRACTION_TOOL_NAME},
                **kwargs,
            )
        except self._anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise ExtractionUnavailableError(f"Anthropic API error: {e}") from e

        for block in response.content:
            if block.type == "tool_use" and block.name == EXTRACTION_TOOL_NAME:
                raw_response = json.dumps(block.input)
                logger.debug(f"Anthropic tool output ({len(raw_response)} chars)")
                return raw_response

        # No tool call; hand back whatever text came back for schema checking
        text = "".join(getattr(block, "text", "") for block in response.content)
        logger.warning(f"Anthropic response had no tool call (stop_reason={response.stop_reason})")
        return text
