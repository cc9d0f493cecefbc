"""LLM extraction services for Booth Beacon."""

from booth_beacon.services.ai.client import (
    LLMClient,
    LLMProvider,
    create_llm_client_from_env,
    get_llm_client,
)

__all__ = [
    "LLMClient",
    "LLMProvider",
    "create_llm_client_from_env",
    "get_llm_client",
]
