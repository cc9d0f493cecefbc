"""LLM provider implementations."""

from booth_beacon.services.ai.providers.anthropic import AnthropicClient
from booth_beacon.services.ai.providers.openai import OpenAIClient

__all__ = ["AnthropicClient", "OpenAIClient"]
