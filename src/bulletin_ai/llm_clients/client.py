"""Top-level client wiring providers, pacing, fallback and validation together."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Union

from bulletin_ai.llm_clients.catalog import ModelCatalog
from bulletin_ai.llm_clients.config import FullConfig, load_config, make_model_id
from bulletin_ai.llm_clients.orchestrator import FallbackCallback, FallbackOrchestrator, OrchestratedResult
from bulletin_ai.llm_clients.providers import CallOptions, ProviderRouter
from bulletin_ai.llm_clients.rate_governor import RateGovernor, WaitCallback
from bulletin_ai.llm_clients.usage import TokenTracker
from bulletin_ai.llm_clients.validation import ValidationFlow, ValidationResult
from bulletin_ai.utils.errors import APIError


class BulletinAI:
    """High-level entry point that wraps provider routing, throttling and fallback."""

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        *,
        config: Optional[FullConfig] = None,
        router: Optional[ProviderRouter] = None,
        governor: Optional[RateGovernor] = None,
        on_fallback: Optional[FallbackCallback] = None,
    ) -> None:
        self._cfg = config if config is not None else load_config(config_path)
        self.router = router or ProviderRouter.from_config(self._cfg)
        self.tokens: TokenTracker = self.router.tokens
        self.governor = governor or RateGovernor.from_config(self._cfg)
        self.catalog = ModelCatalog(self.router, cache=self._cfg.catalog.cache_model_list)
        self.orchestrator = FallbackOrchestrator(
            self.router,
            self.governor,
            catalog=self.catalog,
            fallback=self._cfg.fallback,
            split=self.router.split,
            has_credentials=self.router.has_credentials,
            on_fallback=on_fallback,
        )
        self.validator = ValidationFlow(
            self.router,
            self.catalog,
            self.governor,
            self._cfg.validation,
            split=self.router.split,
        )

    @property
    def config(self) -> FullConfig:
        return self._cfg

    def resolve_model(self, model: Optional[str] = None) -> str:
        """Normalise ``model`` (or the configured default) to a ``provider:model`` id."""

        chosen = model or self._cfg.default_model
        if not chosen:
            raise APIError("No model given and no default_model configured")
        provider, name = self.router.split(chosen)
        return make_model_id(provider, name)

    # ------------------------------------------------------------------ public
    async def generate(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        options: Optional[CallOptions] = None,
        on_wait: Optional[WaitCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> OrchestratedResult:
        return await self.orchestrator.run(
            prompt,
            model=self.resolve_model(model),
            options=options,
            on_wait=on_wait,
            cancel=cancel,
        )

    async def validate(
        self,
        provider: str,
        model: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> ValidationResult:
        result = await self.validator.validate(provider, model, cancel)
        if result.model_used and result.is_valid:
            self.orchestrator.confirm_model(result.model_used)
        return result


__all__ = ["BulletinAI"]
