"""Multi-turn tool-calling loop over a single provider adapter."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any

from parley.errors import IterationLimitExceededError
from parley.providers._utils import is_aborted
from parley.providers.models import FunctionCallResponse, Message, UsageRecord
from parley.tools import ToolResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from parley.config import Config
    from parley.providers.base import Provider
    from parley.providers.models import ToolCall
    from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class ConversationState:
    """Mutable transcript owned by one Conversation."""

    messages: list[Message] = field(default_factory=list)
    provider: str = ""
    continuation_token: str | None = None
    iterations: int = 0


@dataclass(frozen=True)
class ConversationResult:
    """Outcome of one ``Conversation.send`` call."""

    content: str
    messages: list[Message]
    iterations: int
    usage: list[UsageRecord] = field(default_factory=list)
    aborted: bool = False

    @property
    def total_usage(self) -> UsageRecord | None:
        total: UsageRecord | None = None
        for record in self.usage:
            total = record if total is None else total + record
        return total


class Conversation:
    """Drive a provider through the request → tool → result cycle.

    Each ``send`` appends a user turn and loops until the model answers
    without tool calls, the turn is aborted, or the iteration cap is hit.
    Tools run sequentially in the order the model emitted them; any tool
    failure is reported back to the model as an error-text tool result.

    Example:
        provider = await connect(config)
        chat = Conversation(provider, registry, config=config)
        result = await chat.send("List the files in src/")
    """

    def __init__(
        self,
        provider: Provider,
        tools: ToolRegistry | None = None,
        *,
        config: Config,
        system_prompt: str | None = None,
    ) -> None:
        self.provider = provider
        self.tools = tools
        self.config = config
        self.system_prompt = system_prompt
        self.state = ConversationState(provider=provider.provider_name)

    @property
    def history(self) -> list[Message]:
        return list(self.state.messages)

    def reset(self) -> None:
        """Drop the transcript and continuation token."""
        self.state = ConversationState(provider=self.provider.provider_name)

    def summary(self) -> str:
        lines = []
        for idx, message in enumerate(self.state.messages):
            text = (message.content or "").replace("\n", " ")
            if len(text) > 60:
                text = text[:57] + "..."
            extra = ""
            if message.tool_calls:
                extra = " calls=" + ",".join(tc.name for tc in message.tool_calls)
            elif message.tool_call_id:
                extra = f" id={message.tool_call_id}"
            lines.append(f"{idx:3d} {message.role:<9}{extra} {text}".rstrip())
        return "\n".join(lines)

    async def send(
        self,
        user_input: str,
        *,
        on_chunk: Callable[[str], None] | None = None,
        abort: asyncio.Event | None = None,
    ) -> ConversationResult:
        """Run one user turn to completion and return the final answer."""
        if not self.state.messages and self.system_prompt:
            self.state.messages.append(Message.system(self.system_prompt))
        self.state.messages.append(Message.user(user_input))

        declarations = list(self.tools.list()) if self.tools is not None else []
        limit = self.config.iteration_limit
        usage: list[UsageRecord] = []
        iterations = 0
        partial: str | None = None

        while True:
            if is_aborted(abort):
                logger.info("Conversation aborted before iteration %d", iterations + 1)
                return self._result(partial or "", iterations, usage, aborted=True)

            iterations += 1
            self.state.iterations += 1
            response = await self._request(declarations, on_chunk, abort)
            if response.usage is not None:
                usage.append(response.usage)
            # Replies without an id (chat fallback, abort) clear the token.
            self.state.continuation_token = response.response_id

            if response.aborted:
                if response.content:
                    self.state.messages.append(Message.assistant(response.content))
                return self._result(
                    response.content or partial or "", iterations, usage, aborted=True
                )

            if not response.tool_calls:
                self.state.messages.append(Message.assistant(response.content))
                return self._result(response.content or "", iterations, usage)

            partial = response.content or partial
            self.state.messages.append(
                Message.assistant(response.content, list(response.tool_calls))
            )
            for tool_call in response.tool_calls:
                content = await self._execute(tool_call)
                self.state.messages.append(Message.tool(tool_call.id, content))

            if iterations >= limit:
                raise IterationLimitExceededError(
                    f"Tool loop stopped after {iterations} iteration(s) without a final answer",
                    hint="Raise max_iterations or simplify the request.",
                    iterations=iterations,
                    partial_content=partial,
                    messages=list(self.state.messages),
                )

    async def _request(
        self,
        declarations: list[Any],
        on_chunk: Callable[[str], None] | None,
        abort: asyncio.Event | None,
    ) -> FunctionCallResponse:
        messages = list(self.state.messages)
        if on_chunk is not None:
            return await self.provider.stream_message_with_tools(
                messages,
                declarations or None,
                on_chunk=on_chunk,
                abort=abort,
                continuation_token=self.state.continuation_token,
            )
        return await self.provider.send_message_with_tools(
            messages,
            declarations or None,
            abort=abort,
            continuation_token=self.state.continuation_token,
        )

    async def _execute(self, tool_call: ToolCall) -> str:
        args = tool_call.parsed_arguments()
        if args is None:
            return _error_text(f"Invalid JSON arguments for tool {tool_call.name}")
        if self.tools is None:
            return _error_text(f"Unknown tool: {tool_call.name}")

        logger.info(
            "Calling tool %s (%s)",
            tool_call.name,
            tool_call.id,
            extra={"event": "tool.call", "tool": tool_call.name},
        )
        try:
            result = await self.tools.execute(tool_call.name, args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Tool %s failed: %s", tool_call.name, e)
            result = ToolResult(success=False, error=f"{type(e).__name__}: {e}")

        logger.debug(
            "Tool %s finished (success=%s)",
            tool_call.name,
            result.success,
            extra={"event": "tool.result", "tool": tool_call.name},
        )
        return result.to_content()

    def _result(
        self,
        content: str,
        iterations: int,
        usage: list[UsageRecord],
        *,
        aborted: bool = False,
    ) -> ConversationResult:
        return ConversationResult(
            content=content,
            messages=list(self.state.messages),
            iterations=iterations,
            usage=usage,
            aborted=aborted,
        )


def _error_text(message: str) -> str:
    return json.dumps({"success": False, "error": message})
