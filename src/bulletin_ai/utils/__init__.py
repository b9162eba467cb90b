"""Utility helpers for bulletin_ai."""

from .errors import (
    APIError,
    EmptyResponseError,
    MissingCredentialError,
    OrchestrationError,
    ProviderError,
    RequestCancelledError,
)
from .real_time_logger import get_logger, set_verbosity

__all__ = [
    "APIError",
    "EmptyResponseError",
    "MissingCredentialError",
    "OrchestrationError",
    "ProviderError",
    "RequestCancelledError",
    "get_logger",
    "set_verbosity",
]
