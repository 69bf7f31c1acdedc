"""Shared utilities for provider implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any
import uuid

from parley.errors import ToolCallIdMismatchError
from parley.providers.models import Message, ToolCall

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

UNKNOWN_FUNCTION_NAME = "unknown_function"


def generate_call_id(prefix: str = "call") -> str:
    """Return a fresh tool-call id for backends that do not supply one."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def loads_arguments(arguments: str) -> dict[str, Any]:
    """Decode a tool-call argument blob for wire formats that want objects."""
    try:
        value = json.loads(arguments) if arguments.strip() else {}
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


def split_system(messages: Sequence[Message]) -> tuple[str | None, list[Message]]:
    """Separate system prompts from conversational turns."""
    system_parts = [m.content for m in messages if m.role == "system" and m.content]
    turns = [m for m in messages if m.role != "system"]
    return ("\n\n".join(system_parts) if system_parts else None), turns


def validate_tool_call_ids(messages: Sequence[Message]) -> None:
    """Reject tool results that do not answer the preceding assistant turn.

    Every tool-role message must carry the id of a ToolCall emitted by the
    most recent assistant message before it.
    """
    expected: set[str] | None = None
    for idx, message in enumerate(messages):
        if message.role == "assistant":
            expected = {tc.id for tc in message.tool_calls or ()}
        elif message.role == "tool":
            call_id = message.tool_call_id
            if expected is None or call_id not in expected:
                raise ToolCallIdMismatchError(
                    f"Tool message at index {idx} references unknown tool call "
                    f"id {call_id!r}",
                    hint=(
                        "Tool results must answer a tool call from the "
                        "immediately preceding assistant message."
                    ),
                    tool_call_id=call_id,
                )


def resolve_tool_name(messages: Sequence[Message], index: int, call_id: str) -> str:
    """Find the function name for *call_id* by scanning backwards from *index*."""
    for message in reversed(messages[:index]):
        if message.role != "assistant" or not message.tool_calls:
            continue
        for tc in message.tool_calls:
            if tc.id == call_id:
                return tc.name
    return UNKNOWN_FUNCTION_NAME


def is_aborted(abort: asyncio.Event | None) -> bool:
    return abort is not None and abort.is_set()


async def close_stream(stream: Any) -> None:
    """Close an SDK stream, whichever close method it exposes."""
    close = getattr(stream, "aclose", None) or getattr(stream, "close", None)
    if not callable(close):
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.debug("Closing stream failed: %s", exc)


@dataclass
class _PendingCall:
    id: str | None
    name: str
    fragments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Buffers streamed tool-call fragments until their block completes.

    Fragments are keyed by the backend's block index. A call becomes a
    ``ToolCall`` only when ``complete`` is called for its index, so a stream
    that ends early never yields truncated arguments.
    """

    def __init__(self, id_prefix: str = "call") -> None:
        self._pending: dict[int, _PendingCall] = {}
        self._completed: list[ToolCall] = []
        self._id_prefix = id_prefix

    def start(self, index: int, *, id: str | None = None, name: str | None = None) -> None:
        self._pending[index] = _PendingCall(id=id, name=name or "")

    def append(
        self,
        index: int,
        fragment: str | None,
        *,
        id: str | None = None,
        name: str | None = None,
    ) -> None:
        pending = self._pending.get(index)
        if pending is None:
            pending = _PendingCall(id=id, name=name or "")
            self._pending[index] = pending
        if id and not pending.id:
            pending.id = id
        if name and not pending.name:
            pending.name = name
        if fragment:
            pending.fragments.append(fragment)

    def is_open(self, index: int) -> bool:
        return index in self._pending

    def complete(self, index: int) -> ToolCall | None:
        pending = self._pending.pop(index, None)
        if pending is None or not pending.name:
            return None
        call = ToolCall(
            id=pending.id or generate_call_id(self._id_prefix),
            name=pending.name,
            arguments="".join(pending.fragments) or "{}",
        )
        self._completed.append(call)
        return call

    def complete_all(self) -> list[ToolCall]:
        return [
            call
            for index in sorted(self._pending)
            if (call := self.complete(index)) is not None
        ]

    def discard(self) -> int:
        """Drop unfinished calls and return how many were dropped."""
        dropped = len(self._pending)
        if dropped:
            logger.warning(
                "Discarding %d unfinished streamed tool call(s)", dropped
            )
        self._pending.clear()
        return dropped

    @property
    def completed(self) -> tuple[ToolCall, ...]:
        return tuple(self._completed)
