"""
LLM Client Abstraction

Provides a unified completion interface over Gemini, Anthropic Claude and
OpenAI. The primary provider is tried first; on failure the call falls back
to whichever other provider has a key configured.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"


@dataclass
class LLMConfig:
    """Configuration for LLM client."""

    provider: LLMProvider
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    anthropic_model: str = "claude-3-5-haiku-latest"
    openai_model: str = "gpt-4o-mini"
    gemini_model: str = "gemini-2.5-flash"
    max_tokens: int = 256
    temperature: float = 0.0


@dataclass
class LLMResponse:
    """Response from LLM."""

    content: str
    model: str
    provider: LLMProvider


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    provider: LLMProvider

    def __init__(self, config: LLMConfig):
        self.config = config
        self._client = None

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        pass


class AnthropicClient(BaseLLMClient):
    """Anthropic Claude client implementation."""

    provider = LLMProvider.ANTHROPIC

    def _get_client(self):
        """Lazy initialization of Anthropic client."""
        if self._client is None:
            import anthropic

            self._client = anthropic.AsyncAnthropic(api_key=self.config.anthropic_api_key)
        return self._client

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate response using Claude."""
        client = self._get_client()
        model = self.config.anthropic_model

        response = await client.messages.create(
            model=model,
            max_tokens=max_tokens or self.config.max_tokens,
            temperature=self.config.temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return LLMResponse(
            content=response.content[0].text,
            model=model,
            provider=self.provider,
        )


class OpenAIClient(BaseLLMClient):
    """OpenAI GPT client implementation."""

    provider = LLMProvider.OPENAI

    def _get_client(self):
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            import openai

            self._client = openai.AsyncOpenAI(api_key=self.config.openai_api_key)
        return self._client

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate response using GPT."""
        client = self._get_client()
        model = self.config.openai_model

        response = await client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.config.temperature,
            max_tokens=max_tokens or self.config.max_tokens,
        )
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=model,
            provider=self.provider,
        )


class GeminiClient(BaseLLMClient):
    """Google Gemini client implementation."""

    provider = LLMProvider.GEMINI

    def _get_client(self):
        """Lazy initialization of the Gemini model."""
        if self._client is None:
            import google.generativeai as genai

            genai.configure(api_key=self.config.gemini_api_key)
            self._client = genai.GenerativeModel(self.config.gemini_model)
        return self._client

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate response using Gemini."""
        model = self._get_client()

        # Gemini takes a single prompt
        full_prompt = f"{system_prompt}\n\n---\n\n{user_prompt}"
        generation_config = {
            "temperature": self.config.temperature,
            "max_output_tokens": max_tokens or self.config.max_tokens,
        }

        # generate_content is synchronous, run it off the event loop
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: model.generate_content(full_prompt, generation_config=generation_config),
        )
        return LLMResponse(
            content=response.text,
            model=self.config.gemini_model,
            provider=self.provider,
        )


_CLIENT_TYPES = {
    LLMProvider.GEMINI: (GeminiClient, "gemini_api_key"),
    LLMProvider.ANTHROPIC: (AnthropicClient, "anthropic_api_key"),
    LLMProvider.OPENAI: (OpenAIClient, "openai_api_key"),
}


class LLMClient:
    """
    Unified LLM client with provider switching and fallback.

    Primary provider is tried first.
    Falls back to secondary provider on failure.
    """

    def __init__(self, config: LLMConfig):
        self.config = config
        self._primary: Optional[BaseLLMClient] = None
        self._fallback: Optional[BaseLLMClient] = None
        self._setup_clients()

    def _setup_clients(self):
        """Setup primary and fallback clients based on configured keys."""
        order = [self.config.provider] + [p for p in LLMProvider if p != self.config.provider]
        available = [
            client_type(self.config)
            for client_type, key_field in (_CLIENT_TYPES[p] for p in order)
            if getattr(self.config, key_field)
        ]
        if available and available[0].provider == self.config.provider:
            self._primary = available.pop(0)
        if available:
            self._fallback = available[0]

        if self._primary is None and self._fallback is None:
            logger.warning("No LLM API keys configured. Intent classification disabled.")

    @property
    def is_configured(self) -> bool:
        return self._primary is not None or self._fallback is not None

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Generate LLM response with automatic fallback.

        Tries primary provider first, falls back to secondary on failure.
        """
        if not self.is_configured:
            raise RuntimeError("No LLM providers configured")

        if self._primary:
            try:
                return await self._primary.generate(system_prompt, user_prompt, max_tokens)
            except Exception as e:
                logger.warning(f"Primary LLM failed: {e}, trying fallback...")
                if self._fallback is None:
                    raise

        return await self._fallback.generate(system_prompt, user_prompt, max_tokens)

    def get_active_provider(self) -> Optional[LLMProvider]:
        """Get the provider that will be tried first."""
        if self._primary:
            return self._primary.provider
        if self._fallback:
            return self._fallback.provider
        return None


# Singleton instance management
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create LLM client singleton."""
    global _llm_client
    if _llm_client is None:
        from app.core.config import settings

        config = LLMConfig(
            provider=LLMProvider(settings.llm_primary_provider),
            anthropic_api_key=settings.anthropic_api_key,
            openai_api_key=settings.openai_api_key,
            gemini_api_key=settings.gemini_api_key,
            anthropic_model=settings.anthropic_model,
            openai_model=settings.openai_model,
            gemini_model=settings.gemini_model,
        )
        _llm_client = LLMClient(config)
    return _llm_client
