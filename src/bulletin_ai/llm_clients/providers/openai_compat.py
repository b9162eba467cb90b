"""OpenAI and OpenAI-compatible (Mistral) chat completion adapter."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from bulletin_ai.llm_clients.config import ProviderSettings
from bulletin_ai.llm_clients.providers.base import CallOptions, ProviderAdapter, ProviderResponse
from bulletin_ai.utils.errors import ProviderError


def _wrap_openai_error(exc: openai.OpenAIError) -> ProviderError:
    if isinstance(exc, openai.APIStatusError):
        return ProviderError(f"API error {exc.status_code}: {exc.message}", status_code=exc.status_code)
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError(f"Request timed out: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError(f"Connection error: {exc}")
    return ProviderError(str(exc))


class OpenAICompatibleAdapter(ProviderAdapter):
    supports_listing = True

    def __init__(self, name: str, settings: ProviderSettings, *, client: Optional[AsyncOpenAI] = None) -> None:
        super().__init__(name, settings)
        self._client_override = client

    def _client(self) -> AsyncOpenAI:
        if self._client_override is not None:
            return self._client_override
        # Retries belong to the orchestrator, not the SDK.
        return AsyncOpenAI(
            base_url=self.settings.base_url,
            api_key=self._api_key(),
            timeout=float(self.settings.timeout_s),
            max_retries=0,
        )

    async def generate(self, model: str, prompt: str, options: CallOptions) -> ProviderResponse:
        client = self._client()
        kwargs: Dict[str, Any] = {}
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
        except openai.OpenAIError as exc:
            raise _wrap_openai_error(exc) from exc

        usage = getattr(completion, "usage", None)
        in_tokens = getattr(usage, "prompt_tokens", 0) if usage else 0
        out_tokens = getattr(usage, "completion_tokens", 0) if usage else 0
        content = (completion.choices[0].message.content or "") if completion.choices else ""
        return ProviderResponse(text=content, input_tokens=in_tokens or 0, output_tokens=out_tokens or 0)

    async def list_models(self) -> Optional[List[str]]:
        client = self._client()
        try:
            return [model.id async for model in client.models.list()]
        except openai.OpenAIError as exc:
            raise _wrap_openai_error(exc) from exc


__all__ = ["OpenAICompatibleAdapter"]
