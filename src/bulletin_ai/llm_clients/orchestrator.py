"""Retry and fallback across a prioritised list of models.

Each orchestrated call walks an explicit state machine::

    PENDING -> WAITING -> CALLING -> SUCCEEDED
                  ^          |
                  |          +--> RETRYING / FALLING_BACK --> WAITING
                  |          +--> FAILED

The transition after a failure is a pure function of the failure class, the
retry budget already spent on the current candidate and whether another
candidate remains (see :func:`next_state`).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, FrozenSet, List, Optional, Sequence, Set, Tuple

from bulletin_ai.llm_clients.catalog import ModelCatalog
from bulletin_ai.llm_clients.config import FallbackSettings, make_model_id, split_model_id
from bulletin_ai.llm_clients.failure_classifier import (
    ClassifierContext,
    FailureClass,
    classify,
    extract_retry_after,
    needs_model_check,
)
from bulletin_ai.llm_clients.providers.base import CallOptions, ProviderCall
from bulletin_ai.llm_clients.rate_governor import RateGovernor, WaitCallback, race_cancel
from bulletin_ai.utils.errors import MissingCredentialError, OrchestrationError, RequestCancelledError
from bulletin_ai.utils.real_time_logger import get_logger

LOGGER = get_logger()

MAX_RETRIES_SAME_MODEL = 1
UNKNOWN_RETRIES = 1

FallbackCallback = Callable[[str, str, str], None]


class CallState(str, Enum):
    PENDING = "PENDING"
    WAITING = "WAITING"
    CALLING = "CALLING"
    SUCCEEDED = "SUCCEEDED"
    RETRYING = "RETRYING"
    FALLING_BACK = "FALLING_BACK"
    FAILED = "FAILED"


@dataclass
class AttemptRecord:
    model_id: str
    started_at: float
    waited_ms: int = 0
    outcome: str = "pending"
    failure_class: Optional[FailureClass] = None
    message: Optional[str] = None


@dataclass
class OrchestratedResult:
    text: str
    model_used: str
    attempts: List[AttemptRecord] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def fell_back(self) -> bool:
        return bool(self.attempts) and self.attempts[0].model_id != self.model_used


def next_state(
    failure_class: FailureClass,
    *,
    retries_used: int,
    has_next: bool,
    max_retries: int = MAX_RETRIES_SAME_MODEL,
) -> CallState:
    """Transition taken after a failed attempt."""

    if failure_class is FailureClass.INVALID_CREDENTIAL:
        return CallState.FAILED
    if failure_class is FailureClass.MODEL_UNAVAILABLE:
        return CallState.FALLING_BACK if has_next else CallState.FAILED
    if failure_class.is_throttling:
        if has_next:
            return CallState.FALLING_BACK
        return CallState.RETRYING if retries_used < max_retries else CallState.FAILED
    # unknown: one more go on the same model first
    if retries_used < UNKNOWN_RETRIES:
        return CallState.RETRYING
    return CallState.FALLING_BACK if has_next else CallState.FAILED


def build_candidates(
    requested: str,
    fallback: FallbackSettings,
    *,
    split: Callable[[str], Tuple[str, str]] = split_model_id,
    has_credentials: Optional[Callable[[str], bool]] = None,
) -> Tuple[str, ...]:
    """Requested model first, then its provider's chain, then other providers in order."""

    provider, _ = split(requested)
    queue: List[str] = [requested]
    if fallback.enabled:
        ordered = [provider] + [name for name in fallback.provider_order if name != provider]
        for name in ordered:
            for model in fallback.chains.get(name, []):
                model_id = make_model_id(name, model)
                if model_id not in queue:
                    queue.append(model_id)
    if has_credentials is not None:
        queue = [model_id for model_id in queue if has_credentials(split(model_id)[0])]
    return tuple(queue)


def describe_failure(
    failure_class: FailureClass,
    attempted: Sequence[str],
    last_message: str,
    available_models: Optional[Sequence[str]] = None,
) -> str:
    """User-facing summary of a terminal failure."""

    count = len(attempted)
    tried = f"{count} model{'s' if count != 1 else ''} tried"
    if failure_class is FailureClass.INVALID_CREDENTIAL:
        return f"API key rejected: {last_message}"
    if failure_class.is_throttling:
        hint_ms = extract_retry_after(last_message)
        retry = f"Retry in ~{hint_ms // 1000}s." if hint_ms else "Retry in a few moments."
        return f"Quota reached ({tried}). {retry}"
    if failure_class is FailureClass.MODEL_UNAVAILABLE:
        message = f"Model not available with this key ({tried})."
        if available_models:
            message += " Available models: " + ", ".join(sorted(available_models))
        return message
    return f"Failed after {tried} ({', '.join(attempted)}): {last_message}"


def _trace(state: CallState, model_id: str, queue: Sequence[str] = ()) -> None:
    if queue:
        LOGGER.debug("[orchestrator] %s %s candidates=%s", state.value, model_id, list(queue))
    else:
        LOGGER.debug("[orchestrator] %s %s", state.value, model_id)


class FallbackOrchestrator:
    """Sequences provider calls over a candidate list, consulting the governor."""

    def __init__(
        self,
        provider: ProviderCall,
        governor: RateGovernor,
        *,
        catalog: Optional[ModelCatalog] = None,
        fallback: Optional[FallbackSettings] = None,
        split: Callable[[str], Tuple[str, str]] = split_model_id,
        has_credentials: Optional[Callable[[str], bool]] = None,
        on_fallback: Optional[FallbackCallback] = None,
    ) -> None:
        self._provider = provider
        self._governor = governor
        self._catalog = catalog
        self._fallback = fallback or FallbackSettings()
        self._split = split
        self._has_credentials = has_credentials
        self._on_fallback = on_fallback
        self._confirmed: Set[str] = set()

    @property
    def max_retries(self) -> int:
        return self._fallback.max_retries_same_model

    def candidates_for(self, model_id: str) -> Tuple[str, ...]:
        return build_candidates(
            model_id,
            self._fallback,
            split=self._split,
            has_credentials=self._has_credentials,
        )

    def confirm_model(self, model_id: str) -> None:
        self._confirmed.add(model_id)

    async def run(
        self,
        prompt: str,
        *,
        model: str,
        options: Optional[CallOptions] = None,
        candidates: Optional[Sequence[str]] = None,
        on_wait: Optional[WaitCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> OrchestratedResult:
        queue = tuple(candidates) if candidates is not None else self.candidates_for(model)
        if not queue:
            raise OrchestrationError(
                f"No API key configured for {model} or any fallback model.",
                failure_class=FailureClass.INVALID_CREDENTIAL,
                last_message="no candidate with credentials",
            )

        attempts: List[AttemptRecord] = []
        index = 0
        retries_used = 0
        last_message = ""
        last_available: Optional[FrozenSet[str]] = None
        _trace(CallState.PENDING, model, queue)

        while True:
            model_id = queue[index]
            _trace(CallState.WAITING, model_id)
            waited = await self._governor.await_ready(model_id, on_wait, cancel)

            _trace(CallState.CALLING, model_id)
            record = AttemptRecord(model_id=model_id, started_at=time.time(), waited_ms=waited)
            attempts.append(record)
            try:
                response = await race_cancel(self._provider.call(model_id, prompt, options), cancel)
            except RequestCancelledError:
                record.outcome = "cancelled"
                raise
            except Exception as exc:
                last_message = str(exc)
                failure_class, available = await self._classify(model_id, exc)
                if available is not None:
                    last_available = available
                record.outcome = "failure"
                record.failure_class = failure_class
                record.message = last_message
                LOGGER.warning(
                    "[orchestrator] %s failed class=%s exception=%s: %s",
                    model_id,
                    failure_class.value,
                    type(exc).__name__,
                    last_message,
                )

                if failure_class.is_throttling:
                    self._governor.mark_throttled(model_id, last_message)

                state = next_state(
                    failure_class,
                    retries_used=retries_used,
                    has_next=index + 1 < len(queue),
                    max_retries=self.max_retries,
                )
                _trace(state, model_id)
                if state is CallState.FAILED:
                    available_list = sorted(last_available) if last_available is not None else None
                    attempted = [r.model_id for r in attempts]
                    raise OrchestrationError(
                        describe_failure(failure_class, list(dict.fromkeys(attempted)), last_message, available_list),
                        failure_class=failure_class,
                        last_message=last_message,
                        attempts=attempts,
                        available_models=available_list,
                    ) from exc
                if state is CallState.RETRYING:
                    retries_used += 1
                    LOGGER.info("[orchestrator] retrying %s (%d/%d)", model_id, retries_used, self.max_retries)
                else:
                    index += 1
                    retries_used = 0
                    LOGGER.info("[orchestrator] falling back from %s to %s", model_id, queue[index])
                continue

            _trace(CallState.SUCCEEDED, model_id)
            record.outcome = "success"
            self._governor.mark_success(model_id)
            self._confirmed.add(model_id)
            if model_id != model:
                LOGGER.info("[orchestrator] %s answered in place of %s", model_id, model)
                if self._on_fallback is not None:
                    self._on_fallback(model, model_id, last_message or "unknown error")
            return OrchestratedResult(
                text=response.text,
                model_used=model_id,
                attempts=attempts,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            )

    async def _classify(self, model_id: str, exc: Exception) -> Tuple[FailureClass, Optional[FrozenSet[str]]]:
        if isinstance(exc, MissingCredentialError):
            return FailureClass.INVALID_CREDENTIAL, None

        message = str(exc)
        provider, model = self._split(model_id)
        context = ClassifierContext(model=model, model_confirmed=model_id in self._confirmed)
        available: Optional[FrozenSet[str]] = None
        listed = needs_model_check(message, context)
        if listed:
            available = await self._list_models(provider)
            if available is not None:
                context = replace(context, available_models=available)
        failure_class = classify(message, context)
        if failure_class is FailureClass.MODEL_UNAVAILABLE and not listed:
            # a 404 naming the model classifies without the list; fetch it for the report
            available = await self._list_models(provider)
        return failure_class, available

    async def _list_models(self, provider: str) -> Optional[FrozenSet[str]]:
        if self._catalog is None:
            return None
        try:
            return await self._catalog.available_models(provider)
        except Exception as exc:
            LOGGER.warning("[orchestrator] could not list %s models: %s", provider, exc)
            return None


__all__ = [
    "CallState",
    "AttemptRecord",
    "OrchestratedResult",
    "FallbackOrchestrator",
    "MAX_RETRIES_SAME_MODEL",
    "next_state",
    "build_candidates",
    "describe_failure",
]
