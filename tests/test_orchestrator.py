import asyncio

import pytest

from bulletin_ai.llm_clients.catalog import ModelCatalog
from bulletin_ai.llm_clients.config import FallbackSettings
from bulletin_ai.llm_clients.failure_classifier import FailureClass
from bulletin_ai.llm_clients.orchestrator import (
    CallState,
    FallbackOrchestrator,
    build_candidates,
    describe_failure,
    next_state,
)
from bulletin_ai.utils.errors import MissingCredentialError, OrchestrationError, ProviderError, RequestCancelledError

from conftest import ScriptedProvider

A = "google:gemini-2.5-flash"
B = "google:gemini-2.0-flash"
C = "openai:gpt-4o-mini"

AUTH_ERROR = ProviderError("API error 400: API key not valid. Please pass a valid API key.", status_code=400)
BARE_404 = ProviderError("API error 404: Requested entity was not found.", status_code=404)
TOO_MANY = ProviderError("API error 429: Too Many Requests", status_code=429)


def make_orchestrator(provider, governor, **kwargs):
    return FallbackOrchestrator(provider, governor, catalog=ModelCatalog(provider), **kwargs)


def run(orchestrator, model=A, candidates=None, **kwargs):
    return asyncio.run(orchestrator.run("Write a comment", model=model, candidates=candidates, **kwargs))


def test_success_on_first_candidate(governor):
    provider = ScriptedProvider({A: ["Great term."]})
    result = run(make_orchestrator(provider, governor), candidates=(A, B))

    assert result.text == "Great term."
    assert result.model_used == A
    assert not result.fell_back
    assert provider.calls == [A]
    assert governor.success_streak(A) == 1


def test_invalid_credential_stops_without_trying_others(governor):
    provider = ScriptedProvider({A: [AUTH_ERROR]})
    with pytest.raises(OrchestrationError) as excinfo:
        run(make_orchestrator(provider, governor), candidates=(A, B))

    assert excinfo.value.failure_class is FailureClass.INVALID_CREDENTIAL
    assert str(excinfo.value).startswith("API key rejected")
    assert provider.calls == [A]
    assert excinfo.value.attempted_models == [A]


def test_missing_key_is_a_credential_failure(governor):
    provider = ScriptedProvider({A: [MissingCredentialError("Google API key missing")]})
    with pytest.raises(OrchestrationError) as excinfo:
        run(make_orchestrator(provider, governor), candidates=(A, B))
    assert excinfo.value.failure_class is FailureClass.INVALID_CREDENTIAL


def test_unlisted_model_is_skipped_without_touching_its_delay(governor):
    provider = ScriptedProvider({A: [BARE_404], B: ["ok"]}, models={"google": ["gemini-2.0-flash"]})
    result = run(make_orchestrator(provider, governor), candidates=(A, B))

    assert result.model_used == B
    assert result.fell_back
    assert provider.calls == [A, B]
    assert provider.list_calls == ["google"]
    assert governor.current_delay(A) == 1000
    assert result.attempts[0].failure_class is FailureClass.MODEL_UNAVAILABLE


def test_throttled_model_backs_off_and_falls_back(governor):
    provider = ScriptedProvider({A: [TOO_MANY], B: ["ok"]}, models={"google": ["gemini-2.5-flash", "gemini-2.0-flash"]})
    notices = []
    orchestrator = make_orchestrator(provider, governor, on_fallback=lambda *args: notices.append(args))
    result = run(orchestrator, candidates=(A, B))

    assert result.model_used == B
    assert governor.current_delay(A) == 2000
    assert governor.current_delay(B) == 1000
    assert notices == [(A, B, "API error 429: Too Many Requests")]


def test_last_candidate_is_retried_once_then_fails(governor, clock):
    provider = ScriptedProvider({A: [TOO_MANY]})
    with pytest.raises(OrchestrationError) as excinfo:
        run(make_orchestrator(provider, governor), candidates=(A,))

    error = excinfo.value
    assert provider.calls == [A, A]
    assert error.failure_class is FailureClass.RATE_LIMITED
    assert str(error) == "Quota reached (1 model tried). Retry in a few moments."
    assert len(error.attempts) == 2
    # the retry waited out the doubled delay
    assert clock.sleeps == [2.0]
    assert governor.current_delay(A) == 4000


def test_retry_budget_comes_from_config(governor):
    provider = ScriptedProvider({A: [TOO_MANY]})
    orchestrator = make_orchestrator(provider, governor, fallback=FallbackSettings(max_retries_same_model=3))
    with pytest.raises(OrchestrationError):
        run(orchestrator, candidates=(A,))
    assert provider.calls == [A, A, A, A]


def test_throttled_retry_can_succeed(governor):
    provider = ScriptedProvider({A: [TOO_MANY, "second time lucky"]})
    result = run(make_orchestrator(provider, governor), candidates=(A,))
    assert result.text == "second time lucky"
    assert [attempt.outcome for attempt in result.attempts] == ["failure", "success"]


def test_unknown_failure_retries_same_model_once(governor):
    provider = ScriptedProvider({A: [ProviderError("something odd"), "ok"]})
    result = run(make_orchestrator(provider, governor), candidates=(A, B))
    assert provider.calls == [A, A]
    assert result.model_used == A
    assert governor.current_delay(A) == 1000


def test_repeated_unknown_failure_falls_back(governor):
    provider = ScriptedProvider({A: [ProviderError("something odd")], B: ["ok"]})
    result = run(make_orchestrator(provider, governor), candidates=(A, B))
    assert provider.calls == [A, A, B]
    assert result.model_used == B


def test_model_unavailable_on_last_candidate_lists_alternatives(governor):
    provider = ScriptedProvider({A: [BARE_404]}, models={"google": ["gemini-2.0-flash", "gemini-1.5-flash"]})
    with pytest.raises(OrchestrationError) as excinfo:
        run(make_orchestrator(provider, governor), candidates=(A,))
    assert excinfo.value.failure_class is FailureClass.MODEL_UNAVAILABLE
    assert excinfo.value.available_models == ["gemini-1.5-flash", "gemini-2.0-flash"]
    assert "gemini-1.5-flash, gemini-2.0-flash" in str(excinfo.value)


def test_not_found_naming_the_model_still_reports_alternatives(governor):
    named_404 = ProviderError(
        "API error 404: models/gemini-9 is not found for API version v1beta, "
        "or is not supported for generateContent.",
        status_code=404,
    )
    provider = ScriptedProvider({"google:gemini-9": [named_404]}, models={"google": ["gemini-2.0-flash"]})
    with pytest.raises(OrchestrationError) as excinfo:
        run(make_orchestrator(provider, governor), model="google:gemini-9", candidates=("google:gemini-9",))

    assert excinfo.value.failure_class is FailureClass.MODEL_UNAVAILABLE
    assert excinfo.value.available_models == ["gemini-2.0-flash"]
    assert provider.list_calls == ["google"]
    assert "Available models: gemini-2.0-flash" in str(excinfo.value)


def test_confirmed_model_skips_model_listing(governor):
    provider = ScriptedProvider({A: ["ok", TOO_MANY, "ok"]}, models={"google": []})
    orchestrator = make_orchestrator(provider, governor)
    run(orchestrator, candidates=(A,))
    result = run(orchestrator, candidates=(A,))

    assert provider.list_calls == []
    assert result.attempts[0].failure_class is FailureClass.RATE_LIMITED


def test_listing_failure_does_not_abort_classification(governor):
    provider = ScriptedProvider({A: [TOO_MANY], B: ["ok"]}, models={"google": ProviderError("API error 500")})
    result = run(make_orchestrator(provider, governor), candidates=(A, B))
    assert result.model_used == B
    assert result.attempts[0].failure_class is FailureClass.RATE_LIMITED


def test_cancel_token_stops_before_any_call(governor):
    provider = ScriptedProvider({A: ["ok"]})
    cancel = asyncio.Event()
    cancel.set()
    with pytest.raises(RequestCancelledError):
        run(make_orchestrator(provider, governor), candidates=(A, B), cancel=cancel)
    assert provider.calls == []


def test_cancel_during_call_is_not_retried(governor):
    class SlowProvider(ScriptedProvider):
        async def call(self, model_id, prompt, options=None):
            self.calls.append(model_id)
            await asyncio.Event().wait()

    provider = SlowProvider()
    orchestrator = make_orchestrator(provider, governor)

    async def runner():
        cancel = asyncio.Event()
        task = asyncio.ensure_future(orchestrator.run("hi", model=A, candidates=(A, B), cancel=cancel))
        for _ in range(5):
            await asyncio.sleep(0)
        cancel.set()
        with pytest.raises(RequestCancelledError):
            await task

    asyncio.run(runner())
    assert provider.calls == [A]


def test_no_candidates_is_a_credential_failure(governor):
    orchestrator = make_orchestrator(ScriptedProvider(), governor, has_credentials=lambda provider: False)
    with pytest.raises(OrchestrationError) as excinfo:
        run(orchestrator)
    assert excinfo.value.failure_class is FailureClass.INVALID_CREDENTIAL


def test_build_candidates_orders_same_provider_first():
    fallback = FallbackSettings(
        chains={"google": ["gemini-2.5-flash", "gemini-2.0-flash"], "openai": ["gpt-4o-mini"]},
        provider_order=["openai", "google"],
    )
    assert build_candidates(A, fallback) == (A, B, C)
    assert build_candidates(C, fallback) == (C, A, B)
    assert build_candidates(A, fallback, has_credentials=lambda provider: provider == "openai") == (C,)


def test_build_candidates_with_fallback_disabled():
    fallback = FallbackSettings(enabled=False, chains={"google": ["gemini-2.0-flash"]})
    assert build_candidates(A, fallback) == (A,)


@pytest.mark.parametrize(
    "failure_class, retries_used, has_next, expected",
    [
        (FailureClass.INVALID_CREDENTIAL, 0, True, CallState.FAILED),
        (FailureClass.MODEL_UNAVAILABLE, 0, True, CallState.FALLING_BACK),
        (FailureClass.MODEL_UNAVAILABLE, 0, False, CallState.FAILED),
        (FailureClass.RATE_LIMITED, 0, True, CallState.FALLING_BACK),
        (FailureClass.QUOTA_EXCEEDED, 0, False, CallState.RETRYING),
        (FailureClass.TRANSIENT, 1, False, CallState.FAILED),
        (FailureClass.UNKNOWN, 0, True, CallState.RETRYING),
        (FailureClass.UNKNOWN, 1, True, CallState.FALLING_BACK),
        (FailureClass.UNKNOWN, 1, False, CallState.FAILED),
    ],
)
def test_transition_table(failure_class, retries_used, has_next, expected):
    assert next_state(failure_class, retries_used=retries_used, has_next=has_next) is expected


def test_describe_quota_failure_uses_retry_hint():
    message = describe_failure(FailureClass.QUOTA_EXCEEDED, [A, B], "quota exceeded, retry in 41.2s")
    assert message == "Quota reached (2 models tried). Retry in ~41s."
