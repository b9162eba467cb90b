"""models.yaml loading and the typed sections the orchestrator reads."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field

from bulletin_ai.utils.real_time_logger import get_logger

LOGGER = get_logger()

KNOWN_PROVIDERS = ("google", "openai", "openrouter", "mistral")


def _first_existing(paths: List[Path]) -> Optional[Path]:
    for path in paths:
        try:
            if path.is_file():
                return path
        except OSError:
            continue
    return None


DEFAULT_CONFIG_LOCATIONS: List[Path] = [
    Path(os.environ.get("BULLETIN_AI_MODELS_CONFIG", "")),
    Path.cwd() / "models.yaml",
    Path.home() / ".bulletin_ai" / "models.yaml",
]
DEFAULT_CONFIG_LOCATIONS = [p for p in DEFAULT_CONFIG_LOCATIONS if str(p).strip()]


class ProviderSettings(BaseModel):
    """Connection settings for one provider adapter."""

    kind: Literal["google", "openai", "openrouter"] = Field(
        "openai", description="Adapter family; OpenAI-compatible vendors use 'openai'."
    )
    api_key_env: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout_s: float = Field(60.0, gt=0)

    def resolve_api_key(self) -> Optional[str]:
        from_env = os.getenv(self.api_key_env) if self.api_key_env else None
        return from_env or self.api_key


class RateLimitSettings(BaseModel):
    default_delay_ms: int = Field(1000, ge=0, description="Base delay for models without an entry.")
    models: Dict[str, int] = Field(default_factory=dict, description="Base delay per ModelId.")

    def base_delay_for(self, model_id: str) -> int:
        return int(self.models.get(model_id, self.default_delay_ms))


class FallbackSettings(BaseModel):
    enabled: bool = True
    max_retries_same_model: int = Field(1, ge=0)
    chains: Dict[str, List[str]] = Field(default_factory=dict, description="Provider-local model names in priority order.")
    provider_order: List[str] = Field(default_factory=list)


class ValidationTarget(BaseModel):
    model: str
    heal_model: Optional[str] = None


class PersistenceSettings(BaseModel):
    path: Optional[str] = None
    key: str = "bulletinAI_adaptiveRateLimits"


class CatalogSettings(BaseModel):
    cache_model_list: bool = False


class ModelPrice(BaseModel):
    input: float = Field(0.0, ge=0)
    output: float = Field(0.0, ge=0)


class FullConfig(BaseModel):
    default_model: Optional[str] = Field(None, description="ModelId used when a call names no model.")
    providers: Dict[str, ProviderSettings] = Field(default_factory=dict)
    rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)
    fallback: FallbackSettings = Field(default_factory=FallbackSettings)
    validation: Dict[str, ValidationTarget] = Field(default_factory=dict)
    pricing: Dict[str, ModelPrice] = Field(default_factory=dict)
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)


def load_config(config_path: Optional[Union[str, Path]] = None) -> FullConfig:
    """Load the models.yaml configuration."""

    search_locations = DEFAULT_CONFIG_LOCATIONS
    if config_path is not None:
        search_locations = [Path(config_path)] + search_locations

    config_file = _first_existing(search_locations)
    if config_file is None:
        raise FileNotFoundError(
            "models.yaml not found. Set BULLETIN_AI_MODELS_CONFIG or place the file in the working directory or ~/.bulletin_ai/."
        )

    with config_file.open("r", encoding="utf-8") as handle:
        config_data = yaml.safe_load(handle) or {}

    config = FullConfig.model_validate(config_data)
    LOGGER.info("[config] Loaded configuration from %s", config_file)
    return config


# --- ModelId helpers -----------------------------------------------------------


def infer_provider(model_name: str) -> str:
    """Guess the provider of a bare model name."""

    if model_name.endswith("-free") or model_name.endswith(":free"):
        return "openrouter"
    if model_name.startswith("gemini"):
        return "google"
    if model_name.startswith(("gpt-", "o1", "o3", "o4")):
        return "openai"
    if model_name.startswith("mistral-") and "/" not in model_name:
        return "mistral"
    return "openrouter"


def split_model_id(model_id: str, providers: Iterable[str] = KNOWN_PROVIDERS) -> Tuple[str, str]:
    """Return ``(provider, model)`` for a ``provider:model`` identifier.

    OpenRouter names may carry their own ``:free`` suffix, so only a known
    provider prefix is split off; anything else is routed by name.
    """

    prefix, sep, rest = model_id.partition(":")
    if sep and prefix in set(providers):
        return prefix, rest
    return infer_provider(model_id), model_id


def make_model_id(provider: str, model: str) -> str:
    return f"{provider}:{model}"


__all__ = [
    "FullConfig",
    "ProviderSettings",
    "RateLimitSettings",
    "FallbackSettings",
    "ValidationTarget",
    "PersistenceSettings",
    "CatalogSettings",
    "ModelPrice",
    "KNOWN_PROVIDERS",
    "load_config",
    "infer_provider",
    "split_model_id",
    "make_model_id",
]
