"""API-key validation: a listing check, then one minimal generation call.

A key that is throttled on listing or generation is still a valid key,
so throttling during validation never reports ``INVALID``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet, List, Mapping, Optional, Tuple

from bulletin_ai.llm_clients.catalog import ModelCatalog
from bulletin_ai.llm_clients.config import ValidationTarget, make_model_id, split_model_id
from bulletin_ai.llm_clients.failure_classifier import (
    ClassifierContext,
    FailureClass,
    Operation,
    classify,
    extract_retry_after,
    model_listed,
)
from bulletin_ai.llm_clients.providers.base import CallOptions, ProviderCall
from bulletin_ai.llm_clients.rate_governor import RateGovernor, race_cancel
from bulletin_ai.utils.errors import EmptyResponseError, MissingCredentialError, RequestCancelledError
from bulletin_ai.utils.real_time_logger import get_logger

LOGGER = get_logger()

VALIDATION_PROMPT = "Validation"
VALIDATION_OPTIONS = CallOptions(temperature=0.0, max_tokens=5)


class ValidationStatus(str, Enum):
    VALID = "valid"
    VALID_QUOTA_LIMITED = "valid-quota-limited"
    INVALID = "invalid"
    MODEL_UNAVAILABLE = "model-unavailable"


@dataclass
class ValidationResult:
    provider: str
    status: ValidationStatus
    model_used: Optional[str] = None
    failure_class: Optional[FailureClass] = None
    message: str = ""
    available_models: Optional[List[str]] = None
    healed_model: Optional[str] = None
    retry_after_ms: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        return self.status in (ValidationStatus.VALID, ValidationStatus.VALID_QUOTA_LIMITED)


class ValidationFlow:
    """Checks that a provider credential works, healing a stale model name once."""

    def __init__(
        self,
        provider_call: ProviderCall,
        catalog: ModelCatalog,
        governor: RateGovernor,
        targets: Mapping[str, ValidationTarget],
        *,
        split: Callable[[str], Tuple[str, str]] = split_model_id,
    ) -> None:
        self._provider_call = provider_call
        self._catalog = catalog
        self._governor = governor
        self._targets = dict(targets)
        self._split = split

    def validation_model(self, provider: str, model: Optional[str] = None) -> str:
        """Model to validate with: ``model`` if it belongs to ``provider``, else the configured default."""

        if model:
            owner, name = self._split(model)
            if owner == provider:
                return name
        target = self._targets.get(provider)
        if target is None:
            raise KeyError(f"No validation model configured for provider '{provider}'")
        return target.model

    async def validate(
        self,
        provider: str,
        model: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> ValidationResult:
        LOGGER.info("[validation] validating %s", provider)

        try:
            available = await race_cancel(self._catalog.available_models(provider, refresh=True), cancel)
        except RequestCancelledError:
            raise
        except Exception as exc:
            return self._listing_failed(provider, str(exc))

        name = self.validation_model(provider, model)
        result = await self._attempt(provider, name, available, cancel)
        if result.failure_class is not FailureClass.MODEL_UNAVAILABLE:
            return result

        target = self._targets.get(provider)
        heal = target.heal_model if target else None
        if heal and heal != name and (available is None or model_listed(heal, available)):
            LOGGER.info("[validation] %s unavailable, retrying with %s", name, heal)
            healed = await self._attempt(provider, heal, available, cancel)
            if healed.failure_class is not FailureClass.MODEL_UNAVAILABLE:
                healed.healed_model = make_model_id(provider, heal)
                return healed
            result = healed

        return self._unavailable(result, available)

    async def _attempt(
        self,
        provider: str,
        model: str,
        available: Optional[FrozenSet[str]],
        cancel: Optional[asyncio.Event],
    ) -> ValidationResult:
        model_id = make_model_id(provider, model)
        await self._governor.await_ready(model_id, cancel=cancel)
        try:
            await race_cancel(self._provider_call.call(model_id, VALIDATION_PROMPT, VALIDATION_OPTIONS), cancel)
        except RequestCancelledError:
            raise
        except EmptyResponseError:
            # The model answered; a tiny token budget can legitimately yield no text.
            pass
        except MissingCredentialError as exc:
            return ValidationResult(
                provider=provider,
                status=ValidationStatus.INVALID,
                model_used=model_id,
                failure_class=FailureClass.INVALID_CREDENTIAL,
                message=str(exc),
            )
        except Exception as exc:
            message = str(exc)
            context = ClassifierContext(
                operation=Operation.GENERATION,
                model=model,
                available_models=available,
            )
            failure_class = classify(message, context)
            LOGGER.warning("[validation] %s failed class=%s: %s", model_id, failure_class.value, message)
            if failure_class.is_throttling:
                self._governor.mark_throttled(model_id, message)
                return ValidationResult(
                    provider=provider,
                    status=ValidationStatus.VALID_QUOTA_LIMITED,
                    model_used=model_id,
                    failure_class=failure_class,
                    message="Key valid, quota limited.",
                    retry_after_ms=extract_retry_after(message),
                )
            status = (
                ValidationStatus.MODEL_UNAVAILABLE
                if failure_class is FailureClass.MODEL_UNAVAILABLE
                else ValidationStatus.INVALID
            )
            return ValidationResult(
                provider=provider,
                status=status,
                model_used=model_id,
                failure_class=failure_class,
                message=message,
            )

        self._governor.mark_success(model_id)
        LOGGER.info("[validation] %s key valid (%s)", provider, model_id)
        return ValidationResult(
            provider=provider,
            status=ValidationStatus.VALID,
            model_used=model_id,
            message="Key valid.",
        )

    def _listing_failed(self, provider: str, message: str) -> ValidationResult:
        self._catalog.invalidate(provider)
        failure_class = classify(message, ClassifierContext(operation=Operation.MODEL_LISTING))
        LOGGER.warning("[validation] %s model listing failed class=%s: %s", provider, failure_class.value, message)
        if failure_class.is_throttling:
            return ValidationResult(
                provider=provider,
                status=ValidationStatus.VALID_QUOTA_LIMITED,
                failure_class=failure_class,
                message="Key valid, quota limited.",
                retry_after_ms=extract_retry_after(message),
            )
        return ValidationResult(
            provider=provider,
            status=ValidationStatus.INVALID,
            failure_class=failure_class,
            message=f"Invalid key: {message}",
        )

    @staticmethod
    def _unavailable(result: ValidationResult, available: Optional[FrozenSet[str]]) -> ValidationResult:
        models = sorted(available) if available is not None else None
        message = f"Model {result.model_used} is not available with this key."
        if models:
            message += " Available models: " + ", ".join(models)
        result.status = ValidationStatus.MODEL_UNAVAILABLE
        result.available_models = models
        result.message = message
        return result


__all__ = ["ValidationFlow", "ValidationResult", "ValidationStatus"]
