"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists so provider tests can share
fake SDK clients instead of growing one-off fakes per test.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from parley.config import Config
    from parley.providers.base import BaseProvider


def make_ready(provider: BaseProvider, config: Config, client: Any) -> BaseProvider:
    """Put *provider* in the Ready state with a fake SDK client."""
    provider.config = config
    provider._client = client
    provider._ready = True
    return provider


class AsyncIter:
    """Async iterator over canned events that records whether it was closed."""

    def __init__(self, items: list[Any]) -> None:
        self._items = list(items)
        self.consumed = 0
        self.closed = False

    def __aiter__(self) -> AsyncIter:
        return self

    async def __anext__(self) -> Any:
        if not self._items:
            raise StopAsyncIteration
        self.consumed += 1
        return self._items.pop(0)

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeEndpoint:
    """Captures kwargs passed to ``create()`` and replays a script.

    Script items may be responses, ``AsyncIter`` streams or exceptions.
    """

    script: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)

    @property
    def last_kwargs(self) -> dict[str, Any]:
        return self.calls[-1]

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def list(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return []


def openai_client(
    chat: FakeEndpoint | None = None, responses: FakeEndpoint | None = None
) -> Any:
    return SimpleNamespace(
        chat=SimpleNamespace(completions=chat or FakeEndpoint()),
        responses=responses or FakeEndpoint(),
        models=FakeEndpoint(),
    )


def anthropic_client(messages: FakeEndpoint) -> Any:
    return SimpleNamespace(messages=messages, models=FakeEndpoint())


# =============================================================================
# OpenAI shapes
# =============================================================================


def chat_completion(
    content: str | None = "ok",
    tool_calls: list[tuple[str, str, str]] | None = None,
    finish_reason: str = "stop",
    usage: dict[str, int] | None = None,
) -> Any:
    """Build a Chat Completions response; tool calls are ``(id, name, args)``."""
    message = SimpleNamespace(
        content=content,
        tool_calls=[
            SimpleNamespace(
                id=tc_id,
                type="function",
                function=SimpleNamespace(name=name, arguments=args),
            )
            for tc_id, name, args in tool_calls or []
        ]
        or None,
    )
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=usage,
    )


def chat_chunk(
    content: str | None = None,
    *,
    tool_calls: list[dict[str, Any]] | None = None,
    finish_reason: str | None = None,
    usage: dict[str, int] | None = None,
) -> Any:
    """Build one streamed chunk; tool call deltas are dicts with ``index``."""
    deltas = [
        SimpleNamespace(
            index=tc["index"],
            id=tc.get("id"),
            function=SimpleNamespace(
                name=tc.get("name"), arguments=tc.get("arguments")
            ),
        )
        for tc in tool_calls or []
    ]
    choices = []
    if content is not None or deltas or finish_reason is not None:
        choices.append(
            SimpleNamespace(
                delta=SimpleNamespace(content=content, tool_calls=deltas or None),
                finish_reason=finish_reason,
            )
        )
    return SimpleNamespace(choices=choices, usage=usage)


# =============================================================================
# Anthropic shapes
# =============================================================================


def anthropic_message(
    blocks: list[dict[str, Any]],
    stop_reason: str = "end_turn",
    usage: dict[str, int] | None = None,
) -> Any:
    return SimpleNamespace(
        content=[SimpleNamespace(**b) for b in blocks],
        stop_reason=stop_reason,
        usage=usage or {"input_tokens": 10, "output_tokens": 5},
    )


def anthropic_event(event_type: str, **fields: Any) -> Any:
    return SimpleNamespace(type=event_type, **fields)
