"""LLM client interface and provider abstraction."""

import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class LLMClient(ABC):
    """Abstract base class for LLM providers."""

    provider: LLMProvider
    model: str

    @abstractmethod
    async def extract(
        self,
        prompt: str,
        schema: dict[str, Any],
        system: str | None = None,
    ) -> str:
        """
        Ask the model for structured output.

        Args:
            prompt: The user prompt, including the content to extract from.
            schema: JSON schema the output must follow.
            system: Optional system prompt.

        Returns:
            The raw response text, expected to be a JSON object.

        Raises:
            ExtractionUnavailableError: The provider could not be reached.
        """
        pass


def get_llm_client(
    provider: LLMProvider | str,
    api_key: str,
    model: str | None = None,
) -> LLMClient:
    """
    Factory function to get an LLM client for the specified provider.

    Args:
        provider: The LLM provider to use.
        api_key: The API key for the provider.
        model: Optional model name override.

    Returns:
        An LLMClient instance for the specified provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    if isinstance(provider, str):
        provider = LLMProvider(provider.lower())

    if provider == LLMProvider.ANTHROPIC:
        from booth_beacon.services.ai.providers.anthropic import AnthropicClient

        return AnthropicClient(api_key=api_key, model=model)
    elif provider == LLMProvider.OPENAI:
        from booth_beacon.services.ai.providers.openai import OpenAIClient

        return OpenAIClient(api_key=api_key, model=model)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")


def create_llm_client_from_env() -> LLMClient:
    """
    Create an LLM client from environment variables.

    Reads AI_PROVIDER (default "anthropic"), AI_MODEL and the matching
    ANTHROPIC_API_KEY / OPENAI_API_KEY.

    Raises:
        ValueError: Missing API key or unsupported provider.
    """
    provider = os.environ.get("AI_PROVIDER", "anthropic").lower()
    model = os.environ.get("AI_MODEL")

    if provider == "anthropic":
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")
    elif provider == "openai":
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required")
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    return get_llm_client(provider=provider, api_key=api_key, model=model)
