"""OpenAI provider: Chat Completions with a Responses API path for reasoning models."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, ClassVar

from parley.errors import APIError
from parley.providers._utils import (
    ToolCallAccumulator,
    close_stream,
    is_aborted,
    split_system,
    validate_tool_call_ids,
)
from parley.providers.base import BaseProvider, ProviderCapabilities
from parley.providers.models import (
    FunctionCallResponse,
    Message,
    ToolCall,
    ToolSchema,
    UsageRecord,
)
from parley.schema import normalize_all, to_openai

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

_REASONING_MODEL_PREFIXES = ("o1", "o3", "o4", "codex")
_RESPONSES_STATUS_MAP: dict[str, str] = {
    "completed": "stop",
    "max_output_tokens": "length",
}


def is_reasoning_model(model: str) -> bool:
    """Whether *model* belongs to a family served best by the Responses API."""
    lowered = model.lower()
    return lowered.startswith(_REASONING_MODEL_PREFIXES) or "reasoning" in lowered


class OpenAIProvider(BaseProvider):
    """OpenAI Chat Completions provider.

    Reasoning models (``o1``/``o3``/``o4``/``codex`` and ``*reasoning*``), or
    any model when ``Config.use_responses_api`` is set, go through the
    Responses API first. When that attempt fails the same request is sent to
    Chat Completions, and only the completing call's result is returned.
    """

    name: ClassVar[str] = "openai"
    supports_responses_api: ClassVar[bool] = True

    def _client_kwargs(self) -> dict[str, Any]:
        config = self.config_or_raise()
        kwargs: dict[str, Any] = {"api_key": config.api_key}
        if config.base_url:
            kwargs["base_url"] = config.base_url
        return kwargs

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(**self._client_kwargs())
        return self._client

    async def _check_connectivity(self) -> None:
        await self._get_client().models.list()

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            caching=False,
            streaming=True,
            reasoning=is_reasoning_model(self.model_name),
            native_tool_calls=True,
            conversation=True,
        )

    def _use_responses_api(self) -> bool:
        config = self.config_or_raise()
        if not self.supports_responses_api:
            return False
        return config.use_responses_api or is_reasoning_model(config.model)

    # ------------------------------------------------------------------ #
    # Canonical → wire
    # ------------------------------------------------------------------ #

    def convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert canonical messages into Chat Completions messages."""
        validate_tool_call_ids(messages)
        wire: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "tool":
                wire.append(
                    {
                        "role": "tool",
                        "tool_call_id": message.tool_call_id,
                        "content": message.content or "",
                    }
                )
            elif message.role == "assistant":
                item: dict[str, Any] = {"role": "assistant", "content": message.content}
                if message.tool_calls:
                    item["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": tc.arguments},
                        }
                        for tc in message.tool_calls
                    ]
                wire.append(item)
            else:
                wire.append({"role": message.role, "content": message.content or ""})
        return wire

    def _chat_kwargs(
        self, messages: Sequence[Message], tools: Sequence[ToolSchema]
    ) -> dict[str, Any]:
        config = self.config_or_raise()
        kwargs: dict[str, Any] = {
            "model": config.model,
            "messages": self.convert_messages(messages),
        }
        if is_reasoning_model(config.model):
            kwargs["max_completion_tokens"] = config.max_tokens
        else:
            kwargs["max_tokens"] = config.max_tokens
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if tools:
            kwargs["tools"] = [to_openai(t) for t in tools]
            kwargs["tool_choice"] = "auto"
        return kwargs

    def _responses_kwargs(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSchema],
        previous_response_id: str | None,
    ) -> dict[str, Any]:
        config = self.config_or_raise()
        validate_tool_call_ids(messages)
        system, turns = split_system(messages)

        history: list[Message] = turns
        last_assistant = max(
            (i for i, m in enumerate(turns) if m.role == "assistant"), default=-1
        )
        if previous_response_id and last_assistant >= 0:
            # The server already holds the transcript. Replay the latest
            # function_call items with their outputs; a naked
            # function_call_output is rejected with a 400.
            history = [
                m
                for m in turns[last_assistant:]
                if m.role != "assistant" or m.tool_calls
            ]

        items: list[dict[str, Any]] = []
        for item in history:
            if item.role == "tool":
                items.append(
                    {
                        "type": "function_call_output",
                        "call_id": item.tool_call_id,
                        "output": item.content or "",
                    }
                )
                continue
            if item.role == "assistant" and item.tool_calls:
                for tc in item.tool_calls:
                    items.append(
                        {
                            "type": "function_call",
                            "call_id": tc.id,
                            "name": tc.name,
                            "arguments": tc.arguments,
                        }
                    )
            if not item.content:
                continue
            text_type = "output_text" if item.role == "assistant" else "input_text"
            items.append(
                {
                    "role": item.role,
                    "content": [{"type": text_type, "text": item.content}],
                }
            )

        kwargs: dict[str, Any] = {
            "model": config.model,
            "input": items,
            "max_output_tokens": config.max_tokens,
        }
        if system:
            kwargs["instructions"] = system
        if previous_response_id:
            kwargs["previous_response_id"] = previous_response_id
        if is_reasoning_model(config.model):
            kwargs["reasoning"] = {"effort": "medium"}
        elif config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.input_schema,
                    "strict": False,
                }
                for t in tools
            ]
        return kwargs

    # ------------------------------------------------------------------ #
    # Wire → canonical
    # ------------------------------------------------------------------ #

    def _parse_chat_completion(self, response: Any) -> FunctionCallResponse:
        choices = getattr(response, "choices", None)
        if not choices:
            raise APIError(
                f"{self.name} returned a response with no choices",
                provider=self.name,
                phase="parse",
                retryable=False,
            )
        choice = choices[0]
        message = choice.message

        tool_calls: list[ToolCall] = []
        for tc in getattr(message, "tool_calls", None) or []:
            function = tc.function
            tool_calls.append(
                ToolCall(
                    id=tc.id,
                    name=function.name,
                    arguments=function.arguments or "{}",
                )
            )

        return FunctionCallResponse(
            content=getattr(message, "content", None),
            tool_calls=tuple(tool_calls),
            finish_reason=getattr(choice, "finish_reason", None),
            usage=UsageRecord.from_raw(getattr(response, "usage", None)),
        )

    @staticmethod
    def _parse_responses_result(response: Any) -> FunctionCallResponse:
        text = getattr(response, "output_text", "") or ""
        tool_calls: list[ToolCall] = []
        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", None) == "function_call":
                tool_calls.append(
                    ToolCall(
                        id=item.call_id,
                        name=item.name,
                        arguments=item.arguments or "{}",
                    )
                )

        status = getattr(response, "status", None)
        finish_reason: str | None = None
        if tool_calls:
            finish_reason = "tool_calls"
        elif isinstance(status, str):
            reason = status.lower()
            if reason == "incomplete":
                details = getattr(response, "incomplete_details", None)
                detail_reason = getattr(details, "reason", None)
                if isinstance(detail_reason, str) and detail_reason:
                    reason = detail_reason.lower()
            finish_reason = _RESPONSES_STATUS_MAP.get(reason, reason)

        response_id = getattr(response, "id", None)
        return FunctionCallResponse(
            content=text or None,
            tool_calls=tuple(tool_calls),
            finish_reason=finish_reason,
            usage=UsageRecord.from_raw(getattr(response, "usage", None)),
            response_id=response_id if isinstance(response_id, str) else None,
        )

    def _postprocess(self, response: FunctionCallResponse) -> FunctionCallResponse:
        """Hook for subclasses that recover tool calls from text."""
        return response

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    async def _try_responses_api(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSchema],
        continuation_token: str | None,
    ) -> FunctionCallResponse | None:
        """Run one Responses API attempt; None means fall back to chat."""
        try:
            kwargs = self._responses_kwargs(messages, tools, continuation_token)
            response = await self._get_client().responses.create(**kwargs)
            return self._parse_responses_result(response)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Responses API request for %s failed, falling back to chat "
                "completions: %s",
                self.model_name,
                e,
            )
            return None

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
        self._require_ready()
        tool_schemas = normalize_all(tools or [])
        validate_tool_call_ids(messages)
        phase = "sendMessageWithTools"
        self._log_call(phase, messages, len(tool_schemas))
        if is_aborted(abort):
            return FunctionCallResponse(finish_reason="aborted", aborted=True)

        if self._use_responses_api():
            result = await self._try_responses_api(
                messages, tool_schemas, continuation_token
            )
            if result is not None:
                self._notify_tool_calls(on_tool_call, result.tool_calls)
                self._log_result(phase, result)
                return result

        kwargs = self._chat_kwargs(messages, tool_schemas)
        try:
            response = await self._get_client().chat.completions.create(**kwargs)
            result = self._postprocess(self._parse_chat_completion(response))
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase) from e

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
        """Stream the conversation; tool calls are assembled per index."""
        self._require_ready()
        tool_schemas = normalize_all(tools or [])
        validate_tool_call_ids(messages)
        phase = "streamMessageWithTools"
        self._log_call(phase, messages, len(tool_schemas))
        if is_aborted(abort):
            return FunctionCallResponse(finish_reason="aborted", aborted=True)

        if self._use_responses_api():
            # Non-streaming attempt: nothing reaches on_chunk unless it succeeds.
            result = await self._try_responses_api(
                messages, tool_schemas, continuation_token
            )
            if result is not None:
                self._emit(on_chunk, result.content or "")
                self._notify_tool_calls(on_tool_call, result.tool_calls)
                self._log_result(phase, result)
                return result

        kwargs = self._chat_kwargs(messages, tool_schemas)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        content_parts: list[str] = []
        calls = ToolCallAccumulator()
        finish_reason: str | None = None
        usage: UsageRecord | None = None
        aborted = False
        stream: Any = None
        try:
            stream = await self._get_client().chat.completions.create(**kwargs)
            async for chunk in stream:
                if is_aborted(abort):
                    aborted = True
                    break
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage is not None:
                    usage = UsageRecord.from_raw(chunk_usage)
                if not getattr(chunk, "choices", None):
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                text = getattr(delta, "content", None)
                if text:
                    content_parts.append(text)
                    self._emit(on_chunk, text)
                for tc in getattr(delta, "tool_calls", None) or []:
                    function = getattr(tc, "function", None)
                    calls.append(
                        tc.index,
                        getattr(function, "arguments", None),
                        id=getattr(tc, "id", None),
                        name=getattr(function, "name", None),
                    )
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                    calls.complete_all()
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
        if aborted:
            calls.discard()
            logger.info("%s stream aborted after %d chunk(s)", self.name, len(content_parts))
            return FunctionCallResponse(
                content=content, finish_reason="aborted", usage=usage, aborted=True
            )
        if finish_reason is None:
            calls.discard()

        result = self._postprocess(
            FunctionCallResponse(
                content=content,
                tool_calls=calls.completed,
                finish_reason=finish_reason,
                usage=usage,
            )
        )
        self._notify_tool_calls(on_tool_call, result.tool_calls)
        self._log_result(phase, result)
        return result
