"""Exception hierarchy for Parley."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class ParleyError(Exception):
    """Base exception for all Parley errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(ParleyError):
    """Configuration validation or resolution failed."""


class SchemaError(ConfigurationError):
    """A tool definition could not be normalized into a canonical schema."""


class InternalError(ParleyError):
    """A Parley internal error (bug) or invariant violation."""


class ToolCallIdMismatchError(ParleyError):
    """A tool result references a tool call the model never emitted."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        tool_call_id: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_call_id = tool_call_id


class IterationLimitExceededError(ParleyError):
    """The tool-calling loop hit its iteration cap before a final answer.

    The partial transcript is attached so callers can show what the model
    produced before the loop was cut off.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        iterations: int = 0,
        partial_content: str | None = None,
        messages: list[Any] | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.iterations = iterations
        self.partial_content = partial_content
        self.messages = messages or []
        self.incomplete = True


class APIError(ParleyError):
    """Backend call failed.

    Adapters attach status and retry metadata so callers can decide whether
    to fall back to another backend without substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class AuthError(APIError):
    """Credential missing or rejected by the backend."""


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class CacheValidationError(APIError):
    """Strict cache validation found no cache activity for a shaped request."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
