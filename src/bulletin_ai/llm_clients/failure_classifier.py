"""Maps loosely structured provider error text onto a fixed set of failure classes.

Vendors disagree on status codes and wording, so every pattern match in the
package lives here.  Callers only ever see :class:`FailureClass`.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional


class FailureClass(str, Enum):
    """Recovery strategy bucket for a failed provider call."""

    INVALID_CREDENTIAL = "invalid-credential"
    QUOTA_EXCEEDED = "quota-exceeded"
    RATE_LIMITED = "rate-limited"
    MODEL_UNAVAILABLE = "model-unavailable"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"

    @property
    def is_throttling(self) -> bool:
        return self in {FailureClass.QUOTA_EXCEEDED, FailureClass.RATE_LIMITED, FailureClass.TRANSIENT}


class Operation(str, Enum):
    GENERATION = "generation"
    MODEL_LISTING = "model-listing"


@dataclass(frozen=True)
class ClassifierContext:
    operation: Operation = Operation.GENERATION
    model: Optional[str] = None
    model_confirmed: bool = False
    available_models: Optional[FrozenSet[str]] = None


_QUOTA_RE = re.compile(r"\b429\b|quota|\brate\b|rate[ _-]?limit|resource[ _]exhausted|too many requests")
_QUOTA_EXHAUSTED_RE = re.compile(r"quota|resource[ _]exhausted|exhausted|insufficient[ _]quota")
_NOT_FOUND_RE = re.compile(r"\b404\b")
_AUTH_RE = re.compile(
    r"\b401\b|\b403\b|invalid[ _-]?api[ _-]?key|invalid[ _-]key|api key not valid|unauthori[sz]ed|permission[ _]denied|forbidden"
)
_TRANSPORT_RE = re.compile(r"\b50[0234]\b|timed? ?out|timeout|connection|unavailable|overloaded")

_RETRY_PATTERNS = (
    re.compile(r"retry in (\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
    re.compile(r"retry after (\d+(?:\.\d+)?)\s*(?:s\b|sec|seconds?)", re.IGNORECASE),
    re.compile(r"retry[-_ ]?delay\W+(\d+(?:\.\d+)?)s", re.IGNORECASE),
)

RETRY_MARGIN_S = 0.5


def extract_retry_after(error_text: Optional[str]) -> Optional[int]:
    """Return the provider's suggested wait in ms (plus a 500 ms margin), if any."""

    if not error_text:
        return None
    for pattern in _RETRY_PATTERNS:
        match = pattern.search(error_text)
        if match:
            seconds = float(match.group(1))
            return math.ceil((seconds + RETRY_MARGIN_S) * 1000)
    return None


def is_quota_shaped(error_text: Optional[str]) -> bool:
    return bool(error_text) and _QUOTA_RE.search(error_text.lower()) is not None


def needs_model_check(error_text: Optional[str], context: ClassifierContext) -> bool:
    """True when the error can only be disambiguated with the credential's model list.

    That covers quota-shaped errors (which some vendors return for unknown
    models) and bare 404s that do not name the model.
    """

    if context.model_confirmed or context.available_models is not None or context.model is None:
        return False
    if is_quota_shaped(error_text):
        return True
    text = (error_text or "").lower()
    return bool(_NOT_FOUND_RE.search(text)) and "model" not in text


def model_listed(model: str, available: FrozenSet[str]) -> bool:
    if model in available:
        return True
    # Google lists models as "models/<name>".
    return f"models/{model}" in available or model.removeprefix("models/") in available


def classify(error_text: Optional[str], context: ClassifierContext = ClassifierContext()) -> FailureClass:
    """Classify ``error_text``; first matching rule wins."""

    text = (error_text or "").lower()

    if is_quota_shaped(text):
        if context.model_confirmed:
            return FailureClass.RATE_LIMITED
        if context.available_models is not None and context.model is not None:
            if not model_listed(context.model, context.available_models):
                return FailureClass.MODEL_UNAVAILABLE
            return FailureClass.RATE_LIMITED
        if _QUOTA_EXHAUSTED_RE.search(text):
            return FailureClass.QUOTA_EXCEEDED
        return FailureClass.RATE_LIMITED

    if _NOT_FOUND_RE.search(text):
        unlisted = (
            context.available_models is not None
            and context.model is not None
            and not model_listed(context.model, context.available_models)
        )
        if "model" in text or unlisted:
            return FailureClass.MODEL_UNAVAILABLE

    if _AUTH_RE.search(text):
        return FailureClass.INVALID_CREDENTIAL

    if context.operation is Operation.MODEL_LISTING:
        # A listing check that fails for any non-throttling reason says the key is bad.
        return FailureClass.INVALID_CREDENTIAL

    if extract_retry_after(error_text) is not None or _TRANSPORT_RE.search(text):
        return FailureClass.TRANSIENT

    return FailureClass.UNKNOWN


__all__ = [
    "FailureClass",
    "Operation",
    "ClassifierContext",
    "classify",
    "extract_retry_after",
    "is_quota_shaped",
    "needs_model_check",
    "model_listed",
]
