"""Prompt-cache shaping for backends with ephemeral prompt caching.

Anthropic caches the request prefix up to each ``cache_control`` marker. The
shaper decides where those markers go, based on the configured strategy:

* ``aggressive``: end of the system block, end of the tool declarations and
  the last conversation message
* ``conservative``: end of the system block only
* ``custom``: no automatic markers; caller-placed markers pass through

A section smaller than the backend minimum is never marked, because the
backend would reject or ignore the marker and still bill for the write.
Token counts here are the rough ``len / 4`` estimate, not a tokenizer.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
import math
import re
from typing import TYPE_CHECKING, Any

from parley.errors import CacheValidationError
from parley.providers.models import (
    CacheBreakpoint,
    CacheControl,
    Message,
    ToolSchema,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parley.config import Config

logger = logging.getLogger(__name__)

CACHING_PROVIDERS: frozenset[str] = frozenset({"anthropic"})

SUPPORTED_MODELS: tuple[str, ...] = (
    "claude-opus-4-20250514",
    "claude-sonnet-4-20250514",
    "claude-3-7-sonnet-20250219",
    "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku-20241022",
    "claude-3-opus-20240229",
    "claude-3-haiku-20240307",
)

# Newer snapshots of the same families cache the same way.
_SUPPORTED_FAMILY_RE = re.compile(
    r"^claude-(?:3-(?:5-|7-)?(?:opus|sonnet|haiku)|(?:opus|sonnet|haiku)-4)"
)

DEFAULT_MIN_TOKENS = 1024
HAIKU_MIN_TOKENS = 2048

#: Anthropic allows at most this many cache_control markers per request.
MAX_BREAKPOINTS = 4

_CACHE_READ_COST_SAVING = 0.9
_CACHE_READ_LATENCY_GAIN = 0.85


@dataclass(frozen=True)
class CacheShapedRequest:
    """Messages, tools and system blocks after cache markers were applied."""

    messages: list[Message]
    tools: list[ToolSchema]
    system_blocks: list[dict[str, Any]]
    breakpoints: list[CacheBreakpoint]


@dataclass(frozen=True)
class CacheUsage:
    """Cache activity reported by the backend for one request."""

    creation_input_tokens: int = 0
    read_input_tokens: int = 0
    ephemeral_5m_input_tokens: int = 0
    ephemeral_1h_input_tokens: int = 0


@dataclass(frozen=True)
class CacheEfficiency:
    """Informational savings estimate; never used for control flow."""

    hit_ratio: float
    cost_savings: float
    latency_improvement: float


def estimate_tokens(text: str) -> int:
    """Approximate the token count of *text* (four characters per token)."""
    return math.ceil(len(text) / 4)


def _message_text(message: Message) -> str:
    text = message.content or ""
    if message.tool_calls:
        text += "".join(tc.name + tc.arguments for tc in message.tool_calls)
    return text


def _tools_text(tools: Sequence[ToolSchema]) -> str:
    return json.dumps(
        [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.input_schema,
            }
            for t in tools
        ]
    )


def _read(raw: Any, key: str) -> Any:
    if isinstance(raw, dict):
        return raw.get(key)
    return getattr(raw, key, None)


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


class PromptCacheShaper:
    """Places cache markers on outbound requests for one configuration."""

    estimate_tokens = staticmethod(estimate_tokens)

    def __init__(self, config: Config, *, provider: str | None = None) -> None:
        self.config = config
        self.provider = provider or config.provider

    def is_available(self) -> bool:
        """Whether caching applies to this backend and is switched on."""
        return self.provider in CACHING_PROVIDERS and self.config.enable_prompt_caching

    def is_model_supported(self, model: str | None = None) -> bool:
        model_id = (model or self.config.model).lower()
        return model_id in SUPPORTED_MODELS or bool(_SUPPORTED_FAMILY_RE.match(model_id))

    def minimum_tokens(self, model: str | None = None) -> int:
        """Smallest prefix, in tokens, the backend will cache for *model*."""
        model_id = (model or self.config.model).lower()
        return HAIKU_MIN_TOKENS if "haiku" in model_id else DEFAULT_MIN_TOKENS

    def cache_control(self) -> CacheControl:
        # 5m is the backend default; only the extended TTL goes on the wire.
        ttl = self.config.cache_ttl
        return CacheControl(ttl=ttl if ttl != "5m" else None)

    def apply_cache_control(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSchema] | None = None,
        system: str | None = None,
    ) -> CacheShapedRequest:
        """Return copies of the inputs with cache markers applied.

        *messages* must not contain system messages; pass the system prompt
        separately. The inputs are never mutated.
        """
        shaped_messages = list(messages)
        shaped_tools = list(tools or [])
        system_block: dict[str, Any] | None = (
            {"type": "text", "text": system} if system else None
        )
        breakpoints: list[CacheBreakpoint] = []

        # Caller-placed markers are kept in every strategy.
        for idx, tool in enumerate(shaped_tools):
            if tool.cache_control is not None:
                breakpoints.append(CacheBreakpoint(position=idx, type="custom"))
        for idx, message in enumerate(shaped_messages):
            if message.cache_control is not None:
                breakpoints.append(CacheBreakpoint(position=idx, type="custom"))

        if not self.is_available() or not self.is_model_supported():
            return self._result(shaped_messages, shaped_tools, system_block, breakpoints)

        strategy = self.config.prompt_caching_strategy
        if strategy == "custom":
            return self._result(shaped_messages, shaped_tools, system_block, breakpoints)

        gate = self.minimum_tokens()
        marker = self.cache_control()
        system_tokens = estimate_tokens(system or "")
        tool_tokens = estimate_tokens(_tools_text(shaped_tools)) if shaped_tools else 0

        def has_room() -> bool:
            return len(breakpoints) < MAX_BREAKPOINTS

        if (
            system_block is not None
            and self.config.cache_system_prompts
            and system_tokens >= gate
            and has_room()
        ):
            system_block["cache_control"] = marker.to_wire()
            breakpoints.append(CacheBreakpoint(position=0, type="system"))

        if strategy == "aggressive":
            if (
                shaped_tools
                and self.config.cache_tool_definitions
                and tool_tokens >= gate
                and shaped_tools[-1].cache_control is None
                and has_room()
            ):
                last = len(shaped_tools) - 1
                shaped_tools[last] = replace(shaped_tools[last], cache_control=marker)
                breakpoints.append(CacheBreakpoint(position=last, type="tools"))

            if shaped_messages and self.config.cache_conversation_history:
                prefix_tokens = system_tokens + tool_tokens
                prefix_tokens += sum(
                    estimate_tokens(_message_text(m)) for m in shaped_messages
                )
                last = len(shaped_messages) - 1
                if (
                    prefix_tokens >= gate
                    and shaped_messages[last].cache_control is None
                    and has_room()
                ):
                    shaped_messages[last] = replace(
                        shaped_messages[last], cache_control=marker
                    )
                    breakpoints.append(
                        CacheBreakpoint(position=last, type="conversation")
                    )

        if breakpoints:
            logger.debug(
                "Applied %d cache breakpoint(s) for %s: %s",
                len(breakpoints),
                self.config.model,
                ", ".join(f"{b.type}@{b.position}" for b in breakpoints),
                extra={"event": "cache.applied"},
            )
        return self._result(shaped_messages, shaped_tools, system_block, breakpoints)

    @staticmethod
    def _result(
        messages: list[Message],
        tools: list[ToolSchema],
        system_block: dict[str, Any] | None,
        breakpoints: list[CacheBreakpoint],
    ) -> CacheShapedRequest:
        return CacheShapedRequest(
            messages=messages,
            tools=tools,
            system_blocks=[system_block] if system_block is not None else [],
            breakpoints=breakpoints,
        )

    @staticmethod
    def extract_cache_usage(usage: Any) -> CacheUsage | None:
        """Read cache counters from a usage block; None when there are none."""
        if usage is None:
            return None
        creation = _int_or_none(_read(usage, "cache_creation_input_tokens"))
        read = _int_or_none(_read(usage, "cache_read_input_tokens"))

        ephemeral_5m = ephemeral_1h = 0
        breakdown = _read(usage, "cache_creation")
        if breakdown is not None:
            ephemeral_5m = _int_or_none(_read(breakdown, "ephemeral_5m_input_tokens")) or 0
            ephemeral_1h = _int_or_none(_read(breakdown, "ephemeral_1h_input_tokens")) or 0

        if creation is None and read is None:
            return None
        return CacheUsage(
            creation_input_tokens=creation or 0,
            read_input_tokens=read or 0,
            ephemeral_5m_input_tokens=ephemeral_5m,
            ephemeral_1h_input_tokens=ephemeral_1h,
        )

    @classmethod
    def calculate_cache_efficiency(cls, usage: Any) -> CacheEfficiency:
        cache_usage = cls.extract_cache_usage(usage) or CacheUsage()
        reads = cache_usage.read_input_tokens
        creates = cache_usage.creation_input_tokens
        total = reads + creates
        return CacheEfficiency(
            hit_ratio=reads / total if total else 0.0,
            cost_savings=reads * _CACHE_READ_COST_SAVING,
            latency_improvement=reads * _CACHE_READ_LATENCY_GAIN,
        )

    def validate_cache_usage(
        self, usage: Any, breakpoints: Sequence[CacheBreakpoint]
    ) -> CacheUsage | None:
        """Log cache activity; in strict mode fail a shaped request with none."""
        cache_usage = self.extract_cache_usage(usage)
        if cache_usage is not None:
            logger.debug(
                "Cache usage for %s: created=%d read=%d",
                self.config.model,
                cache_usage.creation_input_tokens,
                cache_usage.read_input_tokens,
                extra={"event": "cache.usage"},
            )

        if not self.config.strict_cache_validation or not breakpoints:
            return cache_usage
        if cache_usage is None or (
            cache_usage.creation_input_tokens == 0 and cache_usage.read_input_tokens == 0
        ):
            raise CacheValidationError(
                f"Request to {self.config.model} was shaped with "
                f"{len(breakpoints)} cache breakpoint(s) but reported no cache activity",
                hint="Disable strict_cache_validation or check the model's caching support.",
                provider=self.provider,
                phase="cache",
                retryable=False,
            )
        return cache_usage
