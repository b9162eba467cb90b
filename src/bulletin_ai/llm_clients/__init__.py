"""LLM client utilities for bulletin comment generation."""

from .client import BulletinAI
from .config import load_config
from .failure_classifier import FailureClass, classify
from .orchestrator import FallbackOrchestrator, OrchestratedResult
from .rate_governor import RateGovernor
from .validation import ValidationFlow, ValidationResult, ValidationStatus

__all__ = [
    "BulletinAI",
    "load_config",
    "FailureClass",
    "classify",
    "FallbackOrchestrator",
    "OrchestratedResult",
    "RateGovernor",
    "ValidationFlow",
    "ValidationResult",
    "ValidationStatus",
]
