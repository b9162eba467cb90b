import pytest

from bulletin_ai.llm_clients.failure_classifier import (
    ClassifierContext,
    FailureClass,
    Operation,
    classify,
    extract_retry_after,
    is_quota_shaped,
    needs_model_check,
)

QUOTA_TEXT = "API error 429: Resource has been exhausted (e.g. check quota). (retryDelay: 12s)"


def test_quota_text_without_model_list_is_quota_exceeded():
    assert classify(QUOTA_TEXT) is FailureClass.QUOTA_EXCEEDED


def test_plain_429_is_rate_limited():
    assert classify("API error 429: Too Many Requests") is FailureClass.RATE_LIMITED
    assert classify("Rate limit reached for requests") is FailureClass.RATE_LIMITED


def test_confirmed_model_is_rate_limited_even_with_quota_wording():
    ctx = ClassifierContext(model="gemini-2.5-flash", model_confirmed=True)
    assert classify(QUOTA_TEXT, ctx) is FailureClass.RATE_LIMITED


def test_quota_error_for_unlisted_model_is_model_unavailable():
    ctx = ClassifierContext(model="gemini-3-pro", available_models=frozenset({"gemini-2.5-flash"}))
    assert classify(QUOTA_TEXT, ctx) is FailureClass.MODEL_UNAVAILABLE


def test_quota_error_for_listed_model_is_rate_limited():
    ctx = ClassifierContext(model="gemini-2.5-flash", available_models=frozenset({"models/gemini-2.5-flash"}))
    assert classify(QUOTA_TEXT, ctx) is FailureClass.RATE_LIMITED


def test_404_naming_model_is_model_unavailable():
    text = "API error 404: models/gemini-1.0 is not found for API version v1beta"
    assert classify(text) is FailureClass.MODEL_UNAVAILABLE


def test_bare_404_needs_the_model_list():
    text = "API error 404: Requested entity was not found."
    ctx = ClassifierContext(model="gemini-x")
    assert needs_model_check(text, ctx)
    assert classify(text, ctx) is FailureClass.UNKNOWN
    listed = ClassifierContext(model="gemini-x", available_models=frozenset({"gemini-y"}))
    assert classify(text, listed) is FailureClass.MODEL_UNAVAILABLE


@pytest.mark.parametrize(
    "text",
    [
        "API error 400: API key not valid. Please pass a valid API key.",
        "API error 401: Incorrect API key provided",
        "API error 403: Permission denied",
        "Unauthorized",
        "invalid_api_key",
    ],
)
def test_credential_errors(text):
    assert classify(text) is FailureClass.INVALID_CREDENTIAL


def test_listing_failures_mean_invalid_credential():
    ctx = ClassifierContext(operation=Operation.MODEL_LISTING)
    assert classify("API error 400: Bad Request", ctx) is FailureClass.INVALID_CREDENTIAL
    assert classify("API error 429: Too Many Requests", ctx) is FailureClass.RATE_LIMITED


@pytest.mark.parametrize(
    "text",
    [
        "API error 503: The service is currently overloaded",
        "Request timed out: read timeout",
        "Connection error: [Errno 111] refused",
        "Please try again, retry after 30 seconds",
    ],
)
def test_transient_errors(text):
    assert classify(text) is FailureClass.TRANSIENT


def test_unrecognised_text_is_unknown():
    assert classify("Empty response from API: the model generated no text.") is FailureClass.UNKNOWN
    assert classify(None) is FailureClass.UNKNOWN
    assert classify("") is FailureClass.UNKNOWN


def test_classification_is_case_insensitive():
    assert classify("RESOURCE_EXHAUSTED") is FailureClass.QUOTA_EXCEEDED
    assert classify("UNAUTHORIZED") is FailureClass.INVALID_CREDENTIAL


def test_classify_is_pure():
    ctx = ClassifierContext(model="gemini-2.5-flash", available_models=frozenset({"gemini-2.5-flash"}))
    results = {classify(QUOTA_TEXT, ctx) for _ in range(5)}
    assert results == {FailureClass.RATE_LIMITED}
    assert ctx.available_models == frozenset({"gemini-2.5-flash"})


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Please retry in 3.0s.", 3500),
        ("retry after 30 seconds", 30500),
        ('"retryDelay": "12s"', 12500),
        (QUOTA_TEXT, 12500),
        ("429 Too Many Requests", None),
        (None, None),
    ],
)
def test_extract_retry_after(text, expected):
    assert extract_retry_after(text) == expected


def test_needs_model_check_only_when_ambiguous():
    ctx = ClassifierContext(model="gemini-2.5-flash")
    assert needs_model_check(QUOTA_TEXT, ctx)
    assert not needs_model_check(QUOTA_TEXT, ClassifierContext(model="gemini-2.5-flash", model_confirmed=True))
    assert not needs_model_check(QUOTA_TEXT, ClassifierContext(model="m", available_models=frozenset()))
    assert not needs_model_check("API error 401: Unauthorized", ctx)
    assert not needs_model_check(QUOTA_TEXT, ClassifierContext())


def test_throttling_classes():
    assert FailureClass.QUOTA_EXCEEDED.is_throttling
    assert FailureClass.RATE_LIMITED.is_throttling
    assert FailureClass.TRANSIENT.is_throttling
    assert not FailureClass.MODEL_UNAVAILABLE.is_throttling
    assert not FailureClass.INVALID_CREDENTIAL.is_throttling
    assert is_quota_shaped("quota exceeded")
    assert not is_quota_shaped("generated text")
