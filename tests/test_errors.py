"""Error mapping contracts: SDK exceptions become the Parley hierarchy."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from parley.errors import (
    APIError,
    AuthError,
    CacheValidationError,
    ConfigurationError,
    IterationLimitExceededError,
    ParleyError,
    RateLimitError,
    SchemaError,
    ToolCallIdMismatchError,
)
from parley.providers._errors import (
    auth_hint,
    extract_retry_after_s,
    extract_status_code,
    wrap_provider_error,
)

pytestmark = pytest.mark.contract


class _Resp:
    def __init__(self, status_code: int, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.headers = headers or {}


class _SdkError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, response=None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.response = response


# =============================================================================
# Hierarchy
# =============================================================================


def test_every_error_shares_the_parley_base() -> None:
    for cls in (
        ConfigurationError,
        SchemaError,
        ToolCallIdMismatchError,
        IterationLimitExceededError,
        APIError,
        AuthError,
        RateLimitError,
        CacheValidationError,
    ):
        assert issubclass(cls, ParleyError)


def test_schema_error_is_a_configuration_error() -> None:
    assert issubclass(SchemaError, ConfigurationError)


def test_backend_errors_are_api_errors() -> None:
    assert issubclass(AuthError, APIError)
    assert issubclass(RateLimitError, APIError)
    assert issubclass(CacheValidationError, APIError)


def test_iteration_limit_error_carries_partial_transcript() -> None:
    err = IterationLimitExceededError(
        "stopped", iterations=3, partial_content="half", messages=["m"]
    )
    assert err.iterations == 3
    assert err.partial_content == "half"
    assert err.messages == ["m"]
    assert err.incomplete is True


def test_hint_is_kept_on_the_exception() -> None:
    err = ConfigurationError("bad", hint="do this")
    assert str(err) == "bad"
    assert err.hint == "do this"


# =============================================================================
# Status / Retry-After extraction
# =============================================================================


def test_extract_status_code_reads_response_status() -> None:
    assert extract_status_code(_SdkError("x", response=_Resp(503))) == 503


def test_extract_status_code_walks_the_cause_chain() -> None:
    try:
        try:
            raise _SdkError("inner", status_code=404)
        except _SdkError as inner:
            raise RuntimeError("outer") from inner
    except RuntimeError as outer:
        assert extract_status_code(outer) == 404


def test_extract_status_code_ignores_non_http_values() -> None:
    err = _SdkError("x")
    err.code = "ENOENT"  # type: ignore[attr-defined]
    assert extract_status_code(err) is None


def test_extract_retry_after_from_headers() -> None:
    err = _SdkError("slow down", response=_Resp(429, {"Retry-After": "2.5"}))
    assert extract_retry_after_s(err) == 2.5


def test_extract_retry_after_ignores_http_dates() -> None:
    err = _SdkError("x", response=_Resp(429, {"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}))
    assert extract_retry_after_s(err) is None


# =============================================================================
# wrap_provider_error
# =============================================================================


def test_wrap_provider_error_maps_429_to_rate_limit_error() -> None:
    err = wrap_provider_error(
        _SdkError("rate limited", response=_Resp(429, {"Retry-After": "3"})),
        provider="openai",
        phase="sendMessageWithTools",
    )
    assert isinstance(err, RateLimitError)
    assert err.status_code == 429
    assert err.retry_after_s == 3.0
    assert err.retryable is True
    assert err.provider == "openai"
    assert "429" in str(err)


@pytest.mark.parametrize("status", [401, 403])
def test_wrap_provider_error_maps_auth_statuses_to_auth_error(status: int) -> None:
    err = wrap_provider_error(
        _SdkError("denied", status_code=status), provider="anthropic", phase="initialize"
    )
    assert isinstance(err, AuthError)
    assert err.retryable is False
    assert err.hint is not None
    assert "ANTHROPIC_API_KEY" in err.hint


def test_wrap_provider_error_treats_400_with_api_key_message_as_auth() -> None:
    err = wrap_provider_error(
        _SdkError("API key not valid. Please pass a valid API key.", status_code=400),
        provider="gemini",
        phase="initialize",
    )
    assert isinstance(err, AuthError)
    assert "GEMINI_API_KEY" in (err.hint or "")


@pytest.mark.parametrize("status", [500, 503, 529])
def test_wrap_provider_error_marks_server_errors_retryable(status: int) -> None:
    err = wrap_provider_error(
        _SdkError("boom", status_code=status), provider="anthropic", phase="send"
    )
    assert type(err) is APIError
    assert err.retryable is True


def test_wrap_provider_error_marks_network_errors_retryable() -> None:
    request = httpx.Request("POST", "https://api.example.com")
    err = wrap_provider_error(
        httpx.ConnectError("refused", request=request), provider="openai", phase="send"
    )
    assert err.retryable is True
    assert err.status_code is None


def test_wrap_provider_error_network_errors_can_be_excluded() -> None:
    request = httpx.Request("POST", "https://api.example.com")
    err = wrap_provider_error(
        httpx.ConnectError("refused", request=request),
        provider="openai",
        phase="send",
        allow_network_errors=False,
    )
    assert err.retryable is False


def test_wrap_provider_error_enriches_existing_api_error_without_clobbering() -> None:
    base = APIError("bad request", retryable=False, status_code=400)
    wrapped = wrap_provider_error(base, provider="gemini", phase="send")

    assert wrapped is base
    assert wrapped.status_code == 400
    assert wrapped.provider == "gemini"
    assert wrapped.phase == "send"


def test_wrap_provider_error_reraises_cancelled_error() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_provider_error(
            asyncio.CancelledError("cancelled"), provider="openai", phase="send"
        )


def test_auth_hint_names_the_provider_env_var() -> None:
    assert "OPENROUTER_API_KEY" in auth_hint("openrouter")
