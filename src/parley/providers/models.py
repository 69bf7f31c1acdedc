"""Canonical conversation model shared by every provider adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Literal

from parley.errors import ConfigurationError

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant", "tool"]
BreakpointType = Literal["system", "tools", "conversation", "custom"]

_ROLES: frozenset[str] = frozenset({"system", "user", "assistant", "tool"})


@dataclass(frozen=True)
class CacheControl:
    """Ephemeral cache marker attached to a message, tool or system block."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] | None = None

    def to_wire(self) -> dict[str, str]:
        wire = {"type": self.type}
        if self.ttl is not None:
            wire["ttl"] = self.ttl
        return wire


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` always keeps the raw JSON text the backend produced, even
    when it does not decode.
    """

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any] | None:
        """Decode the argument blob, or None when it is not a JSON object."""
        if not self.arguments.strip():
            return {}
        try:
            value = json.loads(self.arguments)
        except ValueError:
            logger.warning(
                "Unparseable arguments for tool %s (%s): %r",
                self.name,
                self.id,
                self.arguments[:200],
            )
            return None
        if not isinstance(value, dict):
            logger.warning(
                "Tool %s (%s) arguments are not an object: %r",
                self.name,
                self.id,
                self.arguments[:200],
            )
            return None
        return value


@dataclass(frozen=True)
class Message:
    """A canonical conversational turn."""

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None
    cache_control: CacheControl | None = None

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ConfigurationError(
                f"Unknown message role: {self.role!r}",
                hint="Use one of: system, user, assistant, tool.",
            )
        if self.role == "tool" and not self.tool_call_id:
            raise ConfigurationError(
                "Tool messages require a tool_call_id",
                hint="Pass the id of the ToolCall this result answers.",
            )
        if self.tool_calls is not None:
            if self.role != "assistant":
                raise ConfigurationError(
                    f"tool_calls are only valid on assistant messages, got {self.role!r}"
                )
            if not isinstance(self.tool_calls, tuple):
                object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls, content: str | None = None, tool_calls: list[ToolCall] | None = None
    ) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


@dataclass(frozen=True)
class ToolSchema:
    """A tool declaration in canonical form."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass(frozen=True)
class CacheBreakpoint:
    """Where a cache marker was placed in an outbound request.

    ``position`` is 0 for the system block, the index of the marked tool for
    the tools block, and the message index for conversation breakpoints.
    """

    position: int
    type: BreakpointType


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _read(raw: Any, key: str) -> Any:
    if isinstance(raw, dict):
        return raw.get(key)
    return getattr(raw, key, None)


@dataclass(frozen=True)
class UsageRecord:
    """Token accounting for one backend round-trip."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> UsageRecord | None:
        """Normalize an Anthropic, OpenAI or Gemini usage block."""
        if raw is None:
            return None

        prompt = _read(raw, "input_tokens")
        completion = _read(raw, "output_tokens")
        if prompt is None and completion is None:
            prompt = _read(raw, "prompt_tokens")
            completion = _read(raw, "completion_tokens")
        if prompt is None and completion is None:
            prompt = _read(raw, "prompt_token_count")
            completion = _read(raw, "candidates_token_count")

        prompt_tokens = _as_int(prompt)
        completion_tokens = _as_int(completion)
        total = _read(raw, "total_tokens")
        if total is None:
            total = _read(raw, "total_token_count")
        total_tokens = _as_int(total) or prompt_tokens + completion_tokens

        creation = _read(raw, "cache_creation_input_tokens")
        read = _read(raw, "cache_read_input_tokens")
        if read is None:
            details = _read(raw, "prompt_tokens_details")
            if details is not None:
                read = _read(details, "cached_tokens")
        if read is None:
            read = _read(raw, "cached_content_token_count")

        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            cache_creation_input_tokens=(
                _as_int(creation) if creation is not None else None
            ),
            cache_read_input_tokens=_as_int(read) if read is not None else None,
        )

    def __add__(self, other: UsageRecord) -> UsageRecord:
        def _sum(a: int | None, b: int | None) -> int | None:
            if a is None and b is None:
                return None
            return (a or 0) + (b or 0)

        return UsageRecord(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cache_creation_input_tokens=_sum(
                self.cache_creation_input_tokens, other.cache_creation_input_tokens
            ),
            cache_read_input_tokens=_sum(
                self.cache_read_input_tokens, other.cache_read_input_tokens
            ),
        )


@dataclass(frozen=True)
class StreamingResponse:
    """Result of a plain streamed completion."""

    content: str = ""
    finish_reason: str | None = None
    usage: UsageRecord | None = None
    aborted: bool = False


@dataclass(frozen=True)
class FunctionCallResponse:
    """Result of a tool-enabled completion, streamed or not."""

    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    finish_reason: str | None = None
    usage: UsageRecord | None = None
    #: Backend continuation token (OpenAI Responses API response id).
    response_id: str | None = None
    cache_breakpoints: tuple[CacheBreakpoint, ...] = field(default_factory=tuple)
    aborted: bool = False

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)
