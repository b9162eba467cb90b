"""Shared types for provider adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from bulletin_ai.llm_clients.config import ProviderSettings
from bulletin_ai.utils.errors import MissingCredentialError


@dataclass
class CallOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ProviderResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class ProviderCall(Protocol):
    """The capability the orchestrator consumes; vendor payloads stay behind it."""

    async def call(self, model_id: str, prompt: str, options: Optional[CallOptions] = None) -> ProviderResponse:
        ...


class ModelLister(Protocol):
    async def list_models(self, provider: str) -> Optional[List[str]]:
        ...


class ProviderAdapter:
    """Base for vendor adapters; subclasses implement ``generate``."""

    supports_listing = False

    def __init__(self, name: str, settings: ProviderSettings) -> None:
        self.name = name
        self.settings = settings

    def has_credentials(self) -> bool:
        return bool(self.settings.resolve_api_key())

    def _api_key(self) -> str:
        api_key = self.settings.resolve_api_key()
        if not api_key:
            hint = f" (set {self.settings.api_key_env})" if self.settings.api_key_env else ""
            raise MissingCredentialError(f"{self.name.capitalize()} API key missing{hint}")
        return api_key

    async def generate(self, model: str, prompt: str, options: CallOptions) -> ProviderResponse:
        raise NotImplementedError

    async def list_models(self) -> Optional[List[str]]:
        return None


__all__ = ["CallOptions", "ProviderResponse", "ProviderCall", "ModelLister", "ProviderAdapter"]
