"""
LLM client used for intent classification and entity extraction.

Gemini, Anthropic and OpenAI SDKs are imported lazily; with no API key
configured the client reports itself as unconfigured and callers fall back
to their defaults.
"""

from app.services.llm.client import (
    LLMClient,
    LLMConfig,
    LLMProvider,
    LLMResponse,
    get_llm_client,
)

__all__ = [
    "LLMClient",
    "LLMConfig",
    "LLMProvider",
    "LLMResponse",
    "get_llm_client",
]
