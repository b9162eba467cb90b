"""OpenRouter adapter built on a Pydantic-AI agent."""

from __future__ import annotations

from typing import Optional

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openrouter import OpenRouterProvider
from pydantic_ai.settings import ModelSettings

from bulletin_ai.llm_clients.providers.base import CallOptions, ProviderAdapter, ProviderResponse
from bulletin_ai.utils.errors import ProviderError


class OpenRouterAdapter(ProviderAdapter):
    """OpenRouter exposes no per-key model list, so listing is unsupported."""

    def build_agent(self, model: str) -> Agent:
        provider = OpenRouterProvider(api_key=self._api_key())
        return Agent(OpenAIChatModel(model, provider=provider), output_type=str)

    async def generate(self, model: str, prompt: str, options: CallOptions) -> ProviderResponse:
        agent = self.build_agent(model)
        settings: ModelSettings = {"timeout": self.settings.timeout_s}
        if options.temperature is not None:
            settings["temperature"] = options.temperature
        if options.max_tokens is not None:
            settings["max_tokens"] = options.max_tokens

        try:
            result = await agent.run(prompt, model_settings=settings)
        except ModelHTTPError as exc:
            raise ProviderError(f"API error {exc.status_code}: {exc.body or exc.message}", status_code=exc.status_code) from exc
        except UnexpectedModelBehavior as exc:
            raise ProviderError(f"Unexpected model behaviour: {exc}") from exc

        usage = result.usage()
        in_tokens: Optional[int] = getattr(usage, "input_tokens", None)
        out_tokens: Optional[int] = getattr(usage, "output_tokens", None)
        return ProviderResponse(text=str(result.output), input_tokens=in_tokens or 0, output_tokens=out_tokens or 0)


__all__ = ["OpenRouterAdapter"]
