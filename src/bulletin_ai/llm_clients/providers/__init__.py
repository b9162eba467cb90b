"""Vendor adapters and the router that exposes them as one call capability."""

from .base import CallOptions, ModelLister, ProviderAdapter, ProviderCall, ProviderResponse
from .google import GoogleAdapter
from .openai_compat import OpenAICompatibleAdapter
from .openrouter import OpenRouterAdapter
from .router import ProviderRouter, build_adapter

__all__ = [
    "CallOptions",
    "ModelLister",
    "ProviderAdapter",
    "ProviderCall",
    "ProviderResponse",
    "GoogleAdapter",
    "OpenAICompatibleAdapter",
    "OpenRouterAdapter",
    "ProviderRouter",
    "build_adapter",
]
