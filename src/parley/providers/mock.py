"""Mock provider for testing."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Any, ClassVar

from parley.providers._utils import is_aborted, validate_tool_call_ids
from parley.providers.base import BaseProvider, ProviderCapabilities
from parley.providers.models import FunctionCallResponse, Message, UsageRecord
from parley.schema import normalize_all

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Callable, Iterable, Sequence


class MockProvider(BaseProvider):
    """Mock provider for testing without API calls.

    Replays scripted responses in order; once the script runs out it echoes
    the latest user message. Every call is recorded on ``calls``.
    """

    name: ClassVar[str] = "mock"
    requires_api_key: ClassVar[bool] = False

    def __init__(self, responses: Iterable[FunctionCallResponse | str] = ()) -> None:
        super().__init__()
        self._script: deque[FunctionCallResponse] = deque(
            r if isinstance(r, FunctionCallResponse) else FunctionCallResponse(content=r)
            for r in responses
        )
        self.calls: list[dict[str, Any]] = []

    def _get_client(self) -> Any:
        return None

    async def _check_connectivity(self) -> None:
        return None

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(caching=False, streaming=True, conversation=True)

    def queue(self, *responses: FunctionCallResponse | str) -> None:
        for r in responses:
            self._script.append(
                r if isinstance(r, FunctionCallResponse) else FunctionCallResponse(content=r)
            )

    def convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        validate_tool_call_ids(messages)
        return [
            {"role": m.role, "content": m.content, "tool_call_id": m.tool_call_id}
            for m in messages
        ]

    def _next(
        self,
        messages: Sequence[Message],
        tools: Sequence[Any] | None,
        continuation_token: str | None,
    ) -> FunctionCallResponse:
        self._require_ready()
        tool_schemas = normalize_all(tools or [])
        self.calls.append(
            {
                "messages": list(messages),
                "tools": [t.name for t in tool_schemas],
                "wire": self.convert_messages(messages),
                "continuation_token": continuation_token,
            }
        )
        if self._script:
            return self._script.popleft()
        last_user = next(
            (m.content for m in reversed(messages) if m.role == "user"), ""
        )
        return FunctionCallResponse(
            content=f"echo: {(last_user or '')[:100]}",
            finish_reason="stop",
            usage=UsageRecord(prompt_tokens=10, completion_tokens=10, total_tokens=20),
        )

    async def send_message_with_tools(
        self,
        messages: Sequence[Message],
        tools: Sequence[Any] | None = None,
        *,
        on_tool_call: Callable[[str, dict[str, Any] | None], None] | None = None,
        abort: asyncio.Event | None = None,
        continuation_token: str | None = None,
    ) -> FunctionCallResponse:
        """Return the next scripted response."""
        if is_aborted(abort):
            return FunctionCallResponse(finish_reason="aborted", aborted=True)
        response = self._next(messages, tools, continuation_token)
        self._notify_tool_calls(on_tool_call, response.tool_calls)
        return response

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
        """Return the next scripted response, emitting its text word by word."""
        if is_aborted(abort):
            return FunctionCallResponse(finish_reason="aborted", aborted=True)
        response = self._next(messages, tools, continuation_token)
        for idx, word in enumerate((response.content or "").split(" ")):
            if is_aborted(abort):
                break
            self._emit(on_chunk, word if idx == 0 else f" {word}")
        self._notify_tool_calls(on_tool_call, response.tool_calls)
        return response
