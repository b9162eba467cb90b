"""Routes ``provider:model`` identifiers to the matching adapter."""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional

from bulletin_ai.llm_clients.config import FullConfig, ProviderSettings, split_model_id
from bulletin_ai.llm_clients.providers.base import CallOptions, ProviderAdapter, ProviderResponse
from bulletin_ai.llm_clients.providers.google import GoogleAdapter
from bulletin_ai.llm_clients.providers.openai_compat import OpenAICompatibleAdapter
from bulletin_ai.llm_clients.providers.openrouter import OpenRouterAdapter
from bulletin_ai.llm_clients.usage import TokenTracker
from bulletin_ai.utils.errors import EmptyResponseError, ProviderError

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)

_ADAPTERS = {
    "google": GoogleAdapter,
    "openai": OpenAICompatibleAdapter,
    "openrouter": OpenRouterAdapter,
}


def build_adapter(name: str, settings: ProviderSettings) -> ProviderAdapter:
    return _ADAPTERS[settings.kind](name, settings)


class ProviderRouter:
    """Provider call capability backed by the configured adapters."""

    def __init__(self, adapters: Mapping[str, ProviderAdapter], tokens: Optional[TokenTracker] = None) -> None:
        self._adapters: Dict[str, ProviderAdapter] = dict(adapters)
        self.tokens = tokens or TokenTracker()

    @classmethod
    def from_config(cls, config: FullConfig, tokens: Optional[TokenTracker] = None) -> "ProviderRouter":
        adapters = {name: build_adapter(name, settings) for name, settings in config.providers.items()}
        return cls(adapters, tokens or TokenTracker(config.pricing))

    @property
    def providers(self) -> List[str]:
        return list(self._adapters)

    def adapter(self, provider: str) -> ProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ProviderError(f"No adapter configured for provider '{provider}'")
        return adapter

    def split(self, model_id: str):
        return split_model_id(model_id, self._adapters)

    def has_credentials(self, provider: str) -> bool:
        adapter = self._adapters.get(provider)
        return adapter is not None and adapter.has_credentials()

    async def call(self, model_id: str, prompt: str, options: Optional[CallOptions] = None) -> ProviderResponse:
        provider, model = self.split(model_id)
        adapter = self.adapter(provider)
        try:
            response = await adapter.generate(model, prompt, options or CallOptions())
        except ProviderError as exc:
            exc.model_id = model_id
            raise

        # Reasoning models wrap their scratchpad in <think> tags.
        text = _THINK_RE.sub("", response.text).strip()
        if not text:
            raise EmptyResponseError("Empty response from API: the model generated no text.", model_id=model_id)
        self.tokens.record(provider, model, response.input_tokens, response.output_tokens)
        return ProviderResponse(text=text, input_tokens=response.input_tokens, output_tokens=response.output_tokens)

    async def list_models(self, provider: str) -> Optional[List[str]]:
        adapter = self.adapter(provider)
        if not adapter.supports_listing:
            return None
        return await adapter.list_models()


__all__ = ["ProviderRouter", "build_adapter"]
