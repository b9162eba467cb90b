"""Lists the models a credential can reach, optionally cached for the session."""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from bulletin_ai.llm_clients.providers.base import ModelLister
from bulletin_ai.utils.real_time_logger import get_logger

LOGGER = get_logger()


class ModelCatalog:
    def __init__(self, lister: ModelLister, *, cache: bool = False) -> None:
        self._lister = lister
        self._cache_enabled = cache
        self._cache: Dict[str, FrozenSet[str]] = {}

    async def available_models(self, provider: str, *, refresh: bool = False) -> Optional[FrozenSet[str]]:
        """Return the provider's model names, or ``None`` when listing is unsupported.

        Listing errors propagate; validation relies on them.
        """

        if self._cache_enabled and not refresh and provider in self._cache:
            return self._cache[provider]
        models = await self._lister.list_models(provider)
        if models is None:
            return None
        result = frozenset(models)
        if self._cache_enabled:
            self._cache[provider] = result
        LOGGER.debug("[catalog] %s lists %d model(s)", provider, len(result))
        return result

    def invalidate(self, provider: Optional[str] = None) -> None:
        if provider is None:
            self._cache.clear()
        else:
            self._cache.pop(provider, None)


__all__ = ["ModelCatalog"]
