"""Anthropic Messages API provider."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, ClassVar

from parley.caching import PromptCacheShaper
from parley.errors import APIError
from parley.providers._utils import (
    ToolCallAccumulator,
    close_stream,
    is_aborted,
    loads_arguments,
    split_system,
    validate_tool_call_ids,
)
from parley.providers.base import BaseProvider, ProviderCapabilities
from parley.providers.models import (
    CacheBreakpoint,
    FunctionCallResponse,
    Message,
    ToolCall,
    UsageRecord,
)
from parley.schema import normalize_all, to_anthropic

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from parley.config import Config

logger = logging.getLogger(__name__)

_STOP_REASONS: dict[str, str] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider with ephemeral prompt caching."""

    name: ClassVar[str] = "anthropic"

    def __init__(self) -> None:
        super().__init__()
        self._cache_shaper: PromptCacheShaper | None = None

    async def initialize(self, config: Config) -> bool:
        self._cache_shaper = PromptCacheShaper(config, provider=self.name)
        return await super().initialize(config)

    def refresh(self, config: Config) -> None:
        super().refresh(config)
        self._cache_shaper = PromptCacheShaper(config, provider=self.name)

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise APIError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                ) from e
            config = self.config_or_raise()
            self._client = AsyncAnthropic(api_key=config.api_key)
        return self._client

    async def _check_connectivity(self) -> None:
        await self._get_client().models.list(limit=1)

    @property
    def cache_shaper(self) -> PromptCacheShaper:
        if self._cache_shaper is None:
            self._cache_shaper = PromptCacheShaper(self.config_or_raise(), provider=self.name)
        return self._cache_shaper

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            caching=True,
            streaming=True,
            reasoning=False,
            native_tool_calls=True,
            conversation=True,
        )

    # ------------------------------------------------------------------ #
    # Canonical → wire
    # ------------------------------------------------------------------ #

    def convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert conversational turns into Anthropic messages.

        System messages are skipped; they travel in the top-level ``system``
        field. Consecutive same-role turns are merged because Anthropic
        requires strict user/assistant alternation.
        """
        validate_tool_call_ids(messages)
        wire: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                continue

            blocks: list[dict[str, Any]] = []
            if message.role == "tool":
                role = "user"
                blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": message.tool_call_id,
                        "content": message.content or "",
                    }
                )
            elif message.role == "assistant":
                role = "assistant"
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for tc in message.tool_calls or ():
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": tc.id,
                            "name": tc.name,
                            "input": loads_arguments(tc.arguments),
                        }
                    )
            else:
                role = "user"
                blocks.append({"type": "text", "text": message.content or ""})

            if not blocks:
                continue
            if message.cache_control is not None:
                blocks[-1]["cache_control"] = message.cache_control.to_wire()
            _append_message(wire, {"role": role, "content": blocks})
        return wire

    def _build_request(
        self, messages: Sequence[Message], tools: Sequence[Any] | None
    ) -> tuple[dict[str, Any], list[CacheBreakpoint]]:
        config = self.config_or_raise()
        tool_schemas = normalize_all(tools or [])
        validate_tool_call_ids(messages)
        system, turns = split_system(messages)

        shaped = self.cache_shaper.apply_cache_control(turns, tool_schemas, system)
        kwargs: dict[str, Any] = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "messages": self.convert_messages(shaped.messages),
        }
        if shaped.system_blocks:
            kwargs["system"] = shaped.system_blocks
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if shaped.tools:
            kwargs["tools"] = [to_anthropic(t) for t in shaped.tools]
        return kwargs, shaped.breakpoints

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    async def send_message_with_tools(
        self,
        messages: Sequence[Message],
        tools: Sequence[Any] | None = None,
        *,
        on_tool_call: Callable[[str, dict[str, Any] | None], None] | None = None,
        abort: asyncio.Event | None = None,
        continuation_token: str | None = None,
    ) -> FunctionCallResponse:
        """Send the conversation and return text and/or tool calls."""
        del continuation_token
        self._require_ready()
        phase = "sendMessageWithTools"
        kwargs, breakpoints = self._build_request(messages, tools)
        self._log_call(phase, messages, len(kwargs.get("tools", ())))
        if is_aborted(abort):
            return FunctionCallResponse(finish_reason="aborted", aborted=True)

        try:
            response = await self._get_client().messages.create(**kwargs)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase) from e

        self.cache_shaper.validate_cache_usage(getattr(response, "usage", None), breakpoints)
        result = _parse_response(response, breakpoints)
        self._notify_tool_calls(on_tool_call, result.tool_calls)
        self._log_result(phase, result)
        return result

    async def stream_message_with_tools(
        self,
        messages: Sequence[Message],
        tools: Sequence[Any] | None = None,
        *,
        on_chunk: Callable[[str], None] | None = None,
        on_tool_call: Callable[[str, dict[str, Any] | None], None] | None = None,
        abort: asyncio.Event | None = None,
        continuation_token: str | None = None,
    ) -> FunctionCallResponse:
        """Stream the conversation from raw Messages API events.

        ``tool_use`` blocks open a buffer at ``content_block_start``, collect
        ``input_json_delta`` fragments and become ToolCalls only at
        ``content_block_stop``.
        """
        del continuation_token
        self._require_ready()
        phase = "streamMessageWithTools"
        kwargs, breakpoints = self._build_request(messages, tools)
        kwargs["stream"] = True
        self._log_call(phase, messages, len(kwargs.get("tools", ())))
        if is_aborted(abort):
            return FunctionCallResponse(finish_reason="aborted", aborted=True)

        content_parts: list[str] = []
        calls = ToolCallAccumulator(id_prefix="toolu")
        usage_raw: dict[str, Any] = {}
        stop_reason: str | None = None
        aborted = False
        stream: Any = None
        try:
            stream = await self._get_client().messages.create(**kwargs)
            async for event in stream:
                if is_aborted(abort):
                    aborted = True
                    break
                event_type = getattr(event, "type", None)
                if event_type == "message_start":
                    _merge_usage(usage_raw, getattr(event.message, "usage", None))
                elif event_type == "content_block_start":
                    block = event.content_block
                    if getattr(block, "type", None) == "tool_use":
                        calls.start(event.index, id=block.id, name=block.name)
                elif event_type == "content_block_delta":
                    delta = event.delta
                    delta_type = getattr(delta, "type", None)
                    if delta_type == "text_delta":
                        content_parts.append(delta.text)
                        self._emit(on_chunk, delta.text)
                    elif delta_type == "input_json_delta":
                        calls.append(event.index, delta.partial_json)
                elif event_type == "content_block_stop":
                    if calls.is_open(event.index):
                        calls.complete(event.index)
                elif event_type == "message_delta":
                    stop_reason = getattr(event.delta, "stop_reason", None) or stop_reason
                    _merge_usage(usage_raw, getattr(event, "usage", None))
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase) from e
        finally:
            if aborted and stream is not None:
                await close_stream(stream)

        content = "".join(content_parts) or None
        usage = UsageRecord.from_raw(usage_raw) if usage_raw else None
        calls.discard()
        if aborted:
            logger.info("%s stream aborted after %d chunk(s)", self.name, len(content_parts))
            return FunctionCallResponse(
                content=content,
                finish_reason="aborted",
                usage=usage,
                cache_breakpoints=tuple(breakpoints),
                aborted=True,
            )

        self.cache_shaper.validate_cache_usage(usage_raw or None, breakpoints)
        result = FunctionCallResponse(
            content=content,
            tool_calls=calls.completed,
            finish_reason=_normalize_stop_reason(stop_reason),
            usage=usage,
            cache_breakpoints=tuple(breakpoints),
        )
        self._notify_tool_calls(on_tool_call, result.tool_calls)
        self._log_result(phase, result)
        return result


def _merge_usage(target: dict[str, Any], usage: Any) -> None:
    """Fold a streamed usage block into *target*, keeping non-null values."""
    if usage is None:
        return
    for key in (
        "input_tokens",
        "output_tokens",
        "cache_creation_input_tokens",
        "cache_read_input_tokens",
    ):
        value = usage.get(key) if isinstance(usage, dict) else getattr(usage, key, None)
        if isinstance(value, int) and not isinstance(value, bool):
            target[key] = value


def _parse_response(
    response: Any, breakpoints: Sequence[CacheBreakpoint] = ()
) -> FunctionCallResponse:
    """Parse an Anthropic Message into a FunctionCallResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []

    for block in getattr(response, "content", None) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(getattr(block, "text", ""))
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=getattr(block, "id", ""),
                    name=getattr(block, "name", ""),
                    arguments=json.dumps(getattr(block, "input", None) or {}),
                )
            )

    text = "\n\n".join(p for p in text_parts if p)
    return FunctionCallResponse(
        content=text or None,
        tool_calls=tuple(tool_calls),
        finish_reason=_normalize_stop_reason(getattr(response, "stop_reason", None)),
        usage=UsageRecord.from_raw(getattr(response, "usage", None)),
        cache_breakpoints=tuple(breakpoints),
    )


def _normalize_stop_reason(stop_reason: Any) -> str | None:
    """Map Anthropic stop_reason to the OpenAI-style vocabulary."""
    if stop_reason is None:
        return None
    reason = str(stop_reason).lower()
    return _STOP_REASONS.get(reason, reason)


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match."""
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)
