"""Google Gemini adapter over the Generative Language REST API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from bulletin_ai.llm_clients.config import ProviderSettings
from bulletin_ai.llm_clients.providers.base import CallOptions, ProviderAdapter, ProviderResponse
from bulletin_ai.utils.errors import ProviderError

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        message = error.get("message") or str(error)
        details = error.get("details") or []
        for detail in details:
            if isinstance(detail, dict) and detail.get("retryDelay"):
                message = f"{message} (retryDelay: {detail['retryDelay']})"
        return message
    return str(data)


class GoogleAdapter(ProviderAdapter):
    supports_listing = True

    def __init__(
        self,
        name: str,
        settings: ProviderSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(name, settings)
        self._transport = transport

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or DEFAULT_BASE_URL).rstrip("/")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.timeout_s, transport=self._transport)

    async def generate(self, model: str, prompt: str, options: CallOptions) -> ProviderResponse:
        api_key = self._api_key()
        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        generation_config: Dict[str, Any] = {}
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if options.max_tokens is not None:
            generation_config["maxOutputTokens"] = options.max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config

        url = f"{self.base_url}/models/{model}:generateContent"
        try:
            async with self._client() as client:
                response = await client.post(url, params={"key": api_key}, json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ProviderError(f"Connection error: {exc}") from exc

        if response.is_error:
            raise ProviderError(
                f"API error {response.status_code}: {_error_text(response)}",
                status_code=response.status_code,
            )

        data = response.json()
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        usage = data.get("usageMetadata") or {}
        return ProviderResponse(
            text=text,
            input_tokens=int(usage.get("promptTokenCount", 0) or 0),
            output_tokens=int(usage.get("candidatesTokenCount", 0) or 0),
        )

    async def list_models(self) -> Optional[List[str]]:
        api_key = self._api_key()
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/models", params={"key": api_key})
        except httpx.TransportError as exc:
            raise ProviderError(f"Connection error: {exc}") from exc
        if response.is_error:
            raise ProviderError(
                f"API error {response.status_code}: {_error_text(response)}",
                status_code=response.status_code,
            )
        models = response.json().get("models") or []
        return [str(entry.get("name", "")).removeprefix("models/") for entry in models if entry.get("name")]


__all__ = ["GoogleAdapter", "DEFAULT_BASE_URL"]
