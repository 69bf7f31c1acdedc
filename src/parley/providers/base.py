"""Provider protocol and the shared adapter lifecycle."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from parley.errors import APIError, AuthError, ConfigurationError
from parley.providers._errors import auth_hint, wrap_provider_error
from parley.providers.models import (
    FunctionCallResponse,
    Message,
    StreamingResponse,
    ToolCall,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from parley.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    caching: bool
    streaming: bool = True
    reasoning: bool = False
    native_tool_calls: bool = True
    conversation: bool = False


@runtime_checkable
class Provider(Protocol):
    """What the conversation loop needs from a backend adapter."""

    @property
    def provider_name(self) -> str:
        """Backend identifier (``openai``, ``anthropic``, ...)."""
        ...

    @property
    def model_name(self) -> str:
        """Model the adapter was initialized for."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature flags for this backend and model."""
        ...

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
        ...

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
        """Stream the conversation, forwarding text fragments to *on_chunk*."""
        ...


class BaseProvider(ABC):
    """Shared lifecycle for adapters: ``Uninitialized → Ready``.

    ``initialize`` never raises for credential or connectivity problems; it
    logs them, keeps the error on ``last_error`` and returns False so the
    caller can try another backend.
    """

    name: ClassVar[str]
    requires_api_key: ClassVar[bool] = True

    def __init__(self) -> None:
        self.config: Config | None = None
        self.last_error: Exception | None = None
        self._client: Any = None
        self._ready = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def initialize(self, config: Config) -> bool:
        """Validate credentials, build the client and run a connectivity check."""
        self.config = config
        self._ready = False
        self.last_error = None

        if self.requires_api_key and not config.api_key:
            self.last_error = AuthError(
                f"No API key configured for {self.name}",
                hint=auth_hint(self.name),
                provider=self.name,
                phase="initialize",
                retryable=False,
            )
            logger.error("%s initialization failed: %s", self.name, self.last_error)
            return False

        try:
            self._get_client()
            await self._check_connectivity()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = wrap_provider_error(
                e,
                provider=self.name,
                phase="initialize",
                message=f"{self.name} connectivity check failed",
            )
            logger.error("%s initialization failed: %s", self.name, self.last_error)
            return False

        self._ready = True
        logger.info("%s provider ready (model=%s)", self.name, config.model)
        return True

    def refresh(self, config: Config) -> None:
        """Swap the configuration snapshot without re-probing."""
        if config.provider != self.config_or_raise().provider:
            raise ConfigurationError(
                f"Cannot refresh {self.name} adapter with provider={config.provider!r}",
                hint="Create and initialize a new adapter for a different backend.",
            )
        self.config = config

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def provider_name(self) -> str:
        return self.name

    @property
    def model_name(self) -> str:
        return self.config.model if self.config is not None else ""

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(caching=False, conversation=True)

    def config_or_raise(self) -> Config:
        if self.config is None:
            raise ConfigurationError(
                f"{self.name} provider has no configuration",
                hint="await provider.initialize(config) first.",
            )
        return self.config

    def _require_ready(self) -> Config:
        config = self.config_or_raise()
        if not self._ready:
            raise ConfigurationError(
                f"{self.name} provider is not initialized",
                hint="await provider.initialize(config) and check its return value.",
            )
        return config

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        self._ready = False
        if client is None:
            return
        self._client = None
        close = getattr(client, "close", None)
        if callable(close):
            result = close()
            if asyncio.iscoroutine(result):
                await result

    # ------------------------------------------------------------------ #
    # Backend hooks
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _get_client(self) -> Any:
        """Lazily build and return the SDK client."""

    @abstractmethod
    async def _check_connectivity(self) -> None:
        """Make one low-cost request that proves the credential works."""

    @abstractmethod
    def convert_messages(self, messages: Sequence[Message]) -> Any:
        """Convert canonical messages into the backend wire format."""

    @abstractmethod
    async def send_message_with_tools(
        self,
        messages: Sequence[Message],
        tools: Sequence[Any] | None = None,
        *,
        on_tool_call: Callable[[str, dict[str, Any] | None], None] | None = None,
        abort: asyncio.Event | None = None,
        continuation_token: str | None = None,
    ) -> FunctionCallResponse: ...

    @abstractmethod
    async def stream_message_with_tools(
        self,
        messages: Sequence[Message],
        tools: Sequence[Any] | None = None,
        *,
        on_chunk: Callable[[str], None] | None = None,
        on_tool_call: Callable[[str, dict[str, Any] | None], None] | None = None,
        abort: asyncio.Event | None = None,
        continuation_token: str | None = None,
    ) -> FunctionCallResponse: ...

    # ------------------------------------------------------------------ #
    # Derived operations
    # ------------------------------------------------------------------ #

    async def send_message(self, messages: Sequence[Message]) -> str:
        """Send a conversation without tools and return the answer text."""
        response = await self.send_message_with_tools(messages)
        return response.content or ""

    async def stream_message(
        self,
        messages: Sequence[Message],
        on_chunk: Callable[[str], None],
        *,
        abort: asyncio.Event | None = None,
    ) -> StreamingResponse:
        """Stream a conversation without tools."""
        response = await self.stream_message_with_tools(
            messages, on_chunk=on_chunk, abort=abort
        )
        return StreamingResponse(
            content=response.content or "",
            finish_reason=response.finish_reason,
            usage=response.usage,
            aborted=response.aborted,
        )

    async def send_tool_results(
        self,
        messages: Sequence[Message],
        tool_results: Sequence[tuple[str, str]],
        tools: Sequence[Any] | None = None,
    ) -> FunctionCallResponse:
        """Append ``(tool_call_id, content)`` results and re-send."""
        extended = [*messages, *(Message.tool(cid, out) for cid, out in tool_results)]
        return await self.send_message_with_tools(extended, tools)

    async def stream_tool_results(
        self,
        messages: Sequence[Message],
        tool_results: Sequence[tuple[str, str]],
        tools: Sequence[Any] | None = None,
        *,
        on_chunk: Callable[[str], None] | None = None,
    ) -> FunctionCallResponse:
        extended = [*messages, *(Message.tool(cid, out) for cid, out in tool_results)]
        return await self.stream_message_with_tools(extended, tools, on_chunk=on_chunk)

    # ------------------------------------------------------------------ #
    # Helpers for subclasses
    # ------------------------------------------------------------------ #

    def _wrap(self, exc: BaseException, phase: str) -> APIError:
        return wrap_provider_error(
            exc,
            provider=self.name,
            phase=phase,
            message=f"{self.name} {phase} failed",
        )

    def _log_call(self, phase: str, messages: Sequence[Message], tool_count: int) -> None:
        logger.debug(
            "%s %s: model=%s messages=%d tools=%d",
            self.name,
            phase,
            self.model_name,
            len(messages),
            tool_count,
            extra={"event": "provider.call"},
        )

    def _log_result(self, phase: str, response: FunctionCallResponse) -> None:
        usage = response.usage
        logger.debug(
            "%s %s done: finish=%s tool_calls=%d tokens=%s",
            self.name,
            phase,
            response.finish_reason,
            len(response.tool_calls),
            usage.total_tokens if usage is not None else "?",
            extra={"event": "provider.result"},
        )

    @staticmethod
    def _notify_tool_calls(
        on_tool_call: Callable[[str, dict[str, Any] | None], None] | None,
        tool_calls: Sequence[ToolCall],
    ) -> None:
        if on_tool_call is None:
            return
        for tc in tool_calls:
            on_tool_call(tc.name, tc.parsed_arguments())

    @staticmethod
    def _emit(on_chunk: Callable[[str], None] | None, text: str) -> None:
        if on_chunk is not None and text:
            on_chunk(text)
