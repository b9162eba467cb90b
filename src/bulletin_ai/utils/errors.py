"""Shared exception types used by the orchestrator and provider adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from bulletin_ai.llm_clients.failure_classifier import FailureClass
    from bulletin_ai.llm_clients.orchestrator import AttemptRecord


class APIError(RuntimeError):
    """Raised when an upstream model provider returns a non-recoverable error."""


class MissingCredentialError(APIError):
    """Raised when a provider adapter is used without a configured API key."""


class ProviderError(APIError):
    """A single failed provider call.

    The message always keeps the vendor text intact because classification
    works on the message, never on structured codes.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, model_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.model_id = model_id


class EmptyResponseError(ProviderError):
    """The provider accepted the request but produced no text."""


class RequestCancelledError(RuntimeError):
    """Raised when a wait is abandoned because the caller's cancel token fired."""


class OrchestrationError(APIError):
    """Terminal failure of an orchestrated call chain."""

    def __init__(
        self,
        message: str,
        *,
        failure_class: "FailureClass",
        last_message: str,
        attempts: Sequence["AttemptRecord"] = (),
        available_models: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.failure_class = failure_class
        self.last_message = last_message
        self.attempts = list(attempts)
        self.available_models = available_models

    @property
    def attempted_models(self) -> List[str]:
        seen: List[str] = []
        for record in self.attempts:
            if record.model_id not in seen:
                seen.append(record.model_id)
        return seen
