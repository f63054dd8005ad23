"""
Text-generation providers used by AI-generated rules.

Each provider exposes generate(system_prompt, user_message, ...) -> str and
raises ProviderError for every failure kind (timeout, auth, rate limit,
malformed response). The caller treats all of them the same way.
"""

import logging
from typing import Dict, Optional

import httpx
from anthropic import Anthropic
from openai import OpenAI

from autoresponder.config import Config
from autoresponder.errors import ProviderError

logger = logging.getLogger(__name__)


class TextGenerationProvider:
    """Interface for text generation collaborators."""

    name = "base"

    def generate(
        self,
        system_prompt: str,
        user_message: str,
        *,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        raise NotImplementedError


class AnthropicProvider(TextGenerationProvider):
    """Claude via the Messages API."""

    name = "anthropic"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, client=None):
        api_key_value = api_key or Config.ANTHROPIC_API_KEY
        if client is None:
            if not api_key_value:
                raise ProviderError("ANTHROPIC_API_KEY not set", provider=self.name)
            # Retries are disabled so the timeout is a hard bound per call.
            client = Anthropic(
                api_key=api_key_value,
                timeout=timeout or Config.AI_TIMEOUT_SECONDS,
                max_retries=0,
            )
        self.client = client
        self.model = model or Config.ANTHROPIC_MODEL

    def generate(self, system_prompt, user_message, *, model=None, max_tokens=None, temperature=None):
        try:
            resp = self.client.messages.create(
                model=model or self.model,
                system=system_prompt,
                messages=[{"role": "user", "content": user_message}],
                max_tokens=max_tokens or Config.MAX_TOKENS,
                temperature=Config.TEMPERATURE if temperature is None else temperature,
            )
            text = resp.content[0].text if resp.content else ""
        except Exception as e:
            raise ProviderError(f"Anthropic request failed: {e}", provider=self.name) from e

        text = text.strip() if isinstance(text, str) else ""
        if not text:
            raise ProviderError("Anthropic returned an empty completion", provider=self.name)
        return text


class OpenAIProvider(TextGenerationProvider):
    """OpenAI via chat.completions."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, client=None):
        api_key_value = api_key or Config.OPENAI_API_KEY
        if client is None:
            if not api_key_value:
                raise ProviderError("OPENAI_API_KEY not set", provider=self.name)
            # Explicit httpx client so proxy env vars and SDK defaults don't change the timeout.
            http_client = httpx.Client(timeout=timeout or Config.AI_TIMEOUT_SECONDS)
            client = OpenAI(api_key=api_key_value, http_client=http_client, max_retries=0)
        self.client = client
        self.model = model or Config.OPENAI_MODEL

    def generate(self, system_prompt, user_message, *, model=None, max_tokens=None, temperature=None):
        chat_kwargs = {
            "model": model or self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": Config.TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or Config.MAX_TOKENS,
        }
        try:
            resp = self.client.chat.completions.create(**chat_kwargs)
            text = resp.choices[0].message.content if resp.choices else ""
        except Exception as e:
            raise ProviderError(f"OpenAI request failed: {e}", provider=self.name) from e

        text = text.strip() if isinstance(text, str) else ""
        if not text:
            raise ProviderError("OpenAI returned an empty completion", provider=self.name)
        return text


_PROVIDER_CLASSES = {
    AnthropicProvider.name: AnthropicProvider,
    OpenAIProvider.name: OpenAIProvider,
}


class ProviderRegistry:
    """Resolves a rule's aiProvider name to a provider, building SDK clients lazily."""

    def __init__(self, providers: Optional[Dict[str, TextGenerationProvider]] = None,
                 default: Optional[str] = None):
        self._providers: Dict[str, TextGenerationProvider] = dict(providers or {})
        self.default = default or Config.DEFAULT_AI_PROVIDER

    def register(self, provider: TextGenerationProvider, name: Optional[str] = None) -> None:
        self._providers[name or provider.name] = provider

    def get(self, name: Optional[str] = None) -> TextGenerationProvider:
        key = name or self.default
        provider = self._providers.get(key)
        if provider is not None:
            return provider
        provider_cls = _PROVIDER_CLASSES.get(key)
        if provider_cls is None:
            raise ProviderError(f"Unsupported AI provider: {key}", provider=key)
        provider = provider_cls()
        self._providers[key] = provider
        logger.debug("[LLM] Initialized %s provider (model=%s)", key, provider.model)
        return provider
