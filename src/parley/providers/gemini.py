"""Gemini provider implementation."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, ClassVar

from parley.errors import APIError, SchemaError
from parley.providers._utils import (
    generate_call_id,
    is_aborted,
    loads_arguments,
    resolve_tool_name,
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
from parley.schema import normalize_all, to_gemini

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, str] = {
    "stop": "stop",
    "max_tokens": "length",
}


class GeminiProvider(BaseProvider):
    """Google Gemini API provider."""

    name: ClassVar[str] = "gemini"

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            config = self.config_or_raise()
            self._client = genai.Client(api_key=config.api_key)
        return self._client

    async def _check_connectivity(self) -> None:
        await self._get_client().aio.models.get(model=self.model_name)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        self._ready = False
        if client is None:
            return
        self._client = None
        aio = getattr(client, "aio", None)
        aclose = getattr(aio, "aclose", None)
        if callable(aclose):
            await aclose()

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            caching=False,
            streaming=True,
            reasoning=False,
            native_tool_calls=True,
            conversation=True,
        )

    # ------------------------------------------------------------------ #
    # Canonical → wire
    # ------------------------------------------------------------------ #

    def convert_messages(self, messages: Sequence[Message]) -> list[Any]:
        """Convert canonical turns into ``types.Content`` entries.

        Tool results become ``function_response`` parts tagged with the
        function name of the matching earlier call; consecutive results share
        one user Content so the model speaks next.
        """
        from google.genai import types

        validate_tool_call_ids(messages)
        contents: list[Any] = []
        pending_responses: list[Any] | None = None

        for idx, message in enumerate(messages):
            if message.role == "system":
                continue

            if message.role == "tool":
                call_id = message.tool_call_id or ""
                part = types.Part.from_function_response(
                    name=resolve_tool_name(messages, idx, call_id),
                    response={"result": message.content or ""},
                )
                if pending_responses is None:
                    pending_responses = [part]
                    contents.append(types.Content(role="user", parts=pending_responses))
                else:
                    pending_responses.append(part)
                continue

            pending_responses = None
            if message.role == "assistant":
                parts: list[Any] = []
                if message.content:
                    parts.append(types.Part.from_text(text=message.content))
                for tc in message.tool_calls or ():
                    parts.append(
                        types.Part(
                            function_call=types.FunctionCall(
                                id=tc.id,
                                name=tc.name,
                                args=loads_arguments(tc.arguments),
                            )
                        )
                    )
                if parts:
                    contents.append(types.Content(role="model", parts=parts))
            else:
                contents.append(
                    types.Content(
                        role="user",
                        parts=[types.Part.from_text(text=message.content or "")],
                    )
                )
        return contents

    def _build_request(
        self, messages: Sequence[Message], tools: Sequence[Any] | None
    ) -> dict[str, Any]:
        from google.genai import types

        config = self.config_or_raise()
        tool_schemas = normalize_all(tools or [])
        system, _ = split_system(messages)

        config_kwargs: dict[str, Any] = {"max_output_tokens": config.max_tokens}
        if system:
            config_kwargs["system_instruction"] = system
        if config.temperature is not None:
            config_kwargs["temperature"] = config.temperature
        if tool_schemas:
            config_kwargs["tools"] = [
                types.Tool(function_declarations=[_declaration(t) for t in tool_schemas])
            ]
            config_kwargs["automatic_function_calling"] = (
                types.AutomaticFunctionCallingConfig(disable=True)
            )

        return {
            "model": config.model,
            "contents": self.convert_messages(messages),
            "config": types.GenerateContentConfig(**config_kwargs),
        }

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
        kwargs = self._build_request(messages, tools)
        self._log_call(phase, messages, len(tools or ()))
        if is_aborted(abort):
            return FunctionCallResponse(finish_reason="aborted", aborted=True)

        try:
            response = await self._get_client().aio.models.generate_content(**kwargs)
            if not response:
                raise APIError(
                    "Gemini returned an empty response.",
                    provider=self.name,
                    phase=phase,
                )
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase) from e

        text, tool_calls, finish_reason = _parse_parts(response)
        result = FunctionCallResponse(
            content=text or None,
            tool_calls=tuple(tool_calls),
            finish_reason="tool_calls" if tool_calls else finish_reason,
            usage=UsageRecord.from_raw(getattr(response, "usage_metadata", None)),
        )
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
        """Stream the conversation; function calls arrive whole per chunk."""
        del continuation_token
        self._require_ready()
        phase = "streamMessageWithTools"
        kwargs = self._build_request(messages, tools)
        self._log_call(phase, messages, len(tools or ()))
        if is_aborted(abort):
            return FunctionCallResponse(finish_reason="aborted", aborted=True)

        content_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        finish_reason: str | None = None
        usage: UsageRecord | None = None
        aborted = False
        try:
            stream = await self._get_client().aio.models.generate_content_stream(
                **kwargs
            )
            async for chunk in stream:
                if is_aborted(abort):
                    aborted = True
                    break
                text, chunk_calls, chunk_finish = _parse_parts(chunk)
                if text:
                    content_parts.append(text)
                    self._emit(on_chunk, text)
                tool_calls.extend(chunk_calls)
                finish_reason = chunk_finish or finish_reason
                chunk_usage = getattr(chunk, "usage_metadata", None)
                if chunk_usage is not None:
                    usage = UsageRecord.from_raw(chunk_usage)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase) from e

        content = "".join(content_parts) or None
        if aborted:
            logger.info("%s stream aborted after %d chunk(s)", self.name, len(content_parts))
            return FunctionCallResponse(
                content=content, finish_reason="aborted", usage=usage, aborted=True
            )

        result = FunctionCallResponse(
            content=content,
            tool_calls=tuple(tool_calls),
            finish_reason="tool_calls" if tool_calls else finish_reason,
            usage=usage,
        )
        self._notify_tool_calls(on_tool_call, result.tool_calls)
        self._log_result(phase, result)
        return result


def _declaration(tool: ToolSchema) -> Any:
    from google.genai import types

    try:
        return types.FunctionDeclaration(**to_gemini(tool))
    except ValueError as e:
        raise SchemaError(
            f"Tool {tool.name!r} cannot be declared to Gemini: {e}",
            hint="Simplify the input schema (plain objects, arrays and scalars).",
        ) from e


def _parse_parts(response: Any) -> tuple[str, list[ToolCall], str | None]:
    """Extract text, function calls and finish reason from the first candidate."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return "", [], None
    candidate = candidates[0]

    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    content = getattr(candidate, "content", None)
    for part in getattr(content, "parts", None) or []:
        if getattr(part, "thought", None):
            continue
        text = getattr(part, "text", None)
        if isinstance(text, str) and text:
            text_parts.append(text)
        fc = getattr(part, "function_call", None)
        if fc is not None and getattr(fc, "name", None):
            # Gemini args are Optional[dict]; default to an empty object.
            tool_calls.append(
                ToolCall(
                    id=str(fc.id or generate_call_id()),
                    name=str(fc.name),
                    arguments=json.dumps(dict(fc.args or {})),
                )
            )

    return "".join(text_parts), tool_calls, _normalize_finish_reason(
        getattr(candidate, "finish_reason", None)
    )


def _normalize_finish_reason(reason: Any) -> str | None:
    if reason is None:
        return None
    name = getattr(reason, "name", None) or str(reason)
    lowered = name.lower()
    return _FINISH_REASONS.get(lowered, lowered)
