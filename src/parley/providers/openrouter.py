"""OpenRouter provider: OpenAI wire format plus bracket-call recovery for Llama."""

from __future__ import annotations

from dataclasses import replace
import json
import logging
from typing import TYPE_CHECKING, Any, ClassVar
import uuid

from parley._http import OPENROUTER_BASE_URL
from parley.bracket_calls import parse_llama_tool_calls
from parley.providers.base import ProviderCapabilities
from parley.providers.models import FunctionCallResponse, Message, ToolCall
from parley.providers.openai import OpenAIProvider

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parley.providers.models import ToolSchema

logger = logging.getLogger(__name__)

_ATTRIBUTION_HEADERS = {
    "HTTP-Referer": "https://github.com/parley-ai/parley",
    "X-Title": "parley",
}

_BRACKET_CALL_INSTRUCTIONS = (
    "When you need a tool and cannot emit a structured tool call, end your "
    "reply with a single bracketed list of calls, for example:\n"
    '[tool_name(arg="value"), other_tool(arg="value")]\n'
    "Available tools: {tools}."
)


class OpenRouterProvider(OpenAIProvider):
    """Chat Completions against OpenRouter.

    Llama-family models often answer with a trailing
    ``[name(arg="v"), ...]`` list instead of structured tool calls. When a
    response carries no structured calls, that list is parsed and turned
    into synthesized ToolCalls. Structured calls always win.
    """

    name: ClassVar[str] = "openrouter"
    supports_responses_api: ClassVar[bool] = False

    def _client_kwargs(self) -> dict[str, Any]:
        config = self.config_or_raise()
        return {
            "api_key": config.api_key,
            "base_url": config.base_url or OPENROUTER_BASE_URL,
            "default_headers": dict(_ATTRIBUTION_HEADERS),
        }

    def _uses_bracket_calls(self) -> bool:
        return "llama" in self.model_name.lower()

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            caching=False,
            streaming=True,
            reasoning=False,
            native_tool_calls=not self._uses_bracket_calls(),
            conversation=True,
        )

    def _chat_kwargs(
        self, messages: Sequence[Message], tools: Sequence[ToolSchema]
    ) -> dict[str, Any]:
        if tools and self._uses_bracket_calls():
            instructions = _BRACKET_CALL_INSTRUCTIONS.format(
                tools=", ".join(t.name for t in tools)
            )
            messages = _with_system_suffix(messages, instructions)
        return super()._chat_kwargs(messages, tools)

    def _postprocess(self, response: FunctionCallResponse) -> FunctionCallResponse:
        if response.tool_calls or not response.content or not self._uses_bracket_calls():
            return response

        parsed = parse_llama_tool_calls(response.content)
        if not parsed:
            return response

        batch = uuid.uuid4().hex[:8]
        tool_calls = tuple(
            ToolCall(
                id=f"llama-{batch}-{idx}",
                name=call.name,
                arguments=json.dumps(call.args),
            )
            for idx, call in enumerate(parsed)
        )
        logger.debug(
            "Recovered %d bracket tool call(s) from %s output",
            len(tool_calls),
            self.model_name,
        )
        return replace(response, tool_calls=tool_calls, finish_reason="tool_calls")


def _with_system_suffix(messages: Sequence[Message], suffix: str) -> list[Message]:
    """Append *suffix* to the first system message, adding one if needed."""
    updated = list(messages)
    for idx, message in enumerate(updated):
        if message.role == "system":
            updated[idx] = replace(
                message, content=f"{message.content or ''}\n\n{suffix}".strip()
            )
            return updated
    return [Message.system(suffix), *updated]
