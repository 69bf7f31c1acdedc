"""Translate SDK exceptions into the Parley hierarchy.

Every adapter funnels failures through ``wrap_provider_error`` so the
conversation loop only ever sees ``APIError`` and its subclasses, each
carrying the backend name, the call that failed and any HTTP metadata the
SDK exposed somewhere along the cause chain.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from parley._http import AUTH_STATUS_CODES, RETRYABLE_STATUS_CODES
from parley.config import API_KEY_ENV_VARS
from parley.errors import (
    APIError,
    AuthError,
    RateLimitError,
    _walk_exception_chain,
)

_STATUS_ATTRS = ("status_code", "status", "code")


@dataclass(frozen=True)
class _ErrorFacts:
    status_code: int | None
    retry_after_s: float | None
    transport_failure: bool


def _as_status(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if 100 <= value <= 599 else None


def _status_of(e: BaseException) -> int | None:
    for attr in _STATUS_ATTRS:
        status = _as_status(getattr(e, attr, None))
        if status is not None:
            return status
    return _as_status(getattr(getattr(e, "response", None), "status_code", None))


def _retry_after_of(e: BaseException) -> float | None:
    direct = getattr(e, "retry_after", None)
    if isinstance(direct, (int, float)) and not isinstance(direct, bool) and direct >= 0:
        return float(direct)

    headers = getattr(getattr(e, "response", None), "headers", None)
    getter = getattr(headers, "get", None)
    if not callable(getter):
        return None
    raw = getter("Retry-After")
    if not isinstance(raw, str):
        return None
    # HTTP-date values are not supported.
    try:
        seconds = float(raw.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _inspect(exc: BaseException) -> _ErrorFacts:
    status_code: int | None = None
    retry_after_s: float | None = None
    transport_failure = False
    for e in _walk_exception_chain(exc):
        if status_code is None:
            status_code = _status_of(e)
        if retry_after_s is None:
            retry_after_s = _retry_after_of(e)
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
            transport_failure = True
    return _ErrorFacts(status_code, retry_after_s, transport_failure)


def extract_status_code(exc: BaseException) -> int | None:
    """First HTTP status found on *exc* or anything in its cause chain."""
    return _inspect(exc).status_code


def extract_retry_after_s(exc: BaseException) -> float | None:
    """First numeric ``Retry-After`` delay found along the cause chain."""
    return _inspect(exc).retry_after_s


def _is_auth_failure(status_code: int | None, text: str) -> bool:
    if status_code in AUTH_STATUS_CODES:
        return True
    lowered = text.lower()
    return status_code == 400 and ("api key" in lowered or "api_key" in lowered)


def auth_hint(provider: str) -> str:
    """Name the environment variable that holds *provider*'s credential."""
    env_var = API_KEY_ENV_VARS.get(provider, "the provider API key")
    return f"Check credentials/permissions (try setting {env_var} or Config.api_key)."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    allow_network_errors: bool = True,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Return the ``APIError`` that describes *exc* for ``provider``/``phase``.

    Cancellation is never wrapped. An exception that is already an
    ``APIError`` is returned as is, with only its missing context filled in.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        if exc.hint is None:
            exc.hint = hint
        return exc

    facts = _inspect(exc)
    text = str(exc)

    err_cls: type[APIError] = APIError
    retryable = (
        facts.retry_after_s is not None
        or facts.status_code in RETRYABLE_STATUS_CODES
        or (allow_network_errors and facts.status_code is None and facts.transport_failure)
    )
    if facts.status_code == 429:
        err_cls = RateLimitError
    elif _is_auth_failure(facts.status_code, text):
        err_cls = AuthError
        retryable = False
        hint = hint or auth_hint(provider)

    summary = message or f"{provider} {phase} failed"
    if facts.status_code is not None:
        summary += f" (status={facts.status_code})"
    return err_cls(
        f"{summary}: {text}" if text else summary,
        hint=hint,
        retryable=retryable,
        status_code=facts.status_code,
        retry_after_s=facts.retry_after_s,
        provider=provider,
        phase=phase,
    )
