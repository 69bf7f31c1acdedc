"""Provider characterization tests.

These tests verify the request/response transformations for each adapter.
They use fake SDK clients to capture the exact shapes sent to provider APIs
without making real network calls.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any

from google.genai import types
from pydantic import BaseModel
import pytest

from parley.config import Config
from parley.errors import (
    APIError,
    AuthError,
    CacheValidationError,
    ConfigurationError,
    RateLimitError,
    SchemaError,
    ToolCallIdMismatchError,
)
from parley.providers import (
    AnthropicProvider,
    GeminiProvider,
    MockProvider,
    OpenAIProvider,
    OpenRouterProvider,
    connect,
    create_provider,
)
from parley.providers._utils import UNKNOWN_FUNCTION_NAME, resolve_tool_name
from parley.providers.models import FunctionCallResponse, Message, ToolCall
from tests.conftest import ANTHROPIC_MODEL, GEMINI_MODEL, LLAMA_MODEL, OPENAI_MODEL
from tests.helpers import (
    FakeEndpoint,
    anthropic_client,
    anthropic_message,
    chat_completion,
    make_ready,
    openai_client,
)

pytestmark = pytest.mark.contract

READ_FILE = {
    "name": "read_file",
    "description": "Read a file",
    "input_schema": {
        "type": "object",
        "properties": {"path": {"type": "string"}},
        "required": ["path"],
    },
}

TOOL_TURN = [
    Message.system("You are terse."),
    Message.user("What is in a.txt?"),
    Message.assistant(
        "Reading it.",
        [ToolCall(id="call_1", name="read_file", arguments='{"path": "a.txt"}')],
    ),
    Message.tool("call_1", "hello"),
]


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_initialize_without_api_key_returns_false_with_auth_error() -> None:
    provider = OpenAIProvider()

    ok = await provider.initialize(Config(provider="openai", model=OPENAI_MODEL))

    assert ok is False
    assert provider.is_ready is False
    assert isinstance(provider.last_error, AuthError)
    assert "OPENAI_API_KEY" in (provider.last_error.hint or "")


@pytest.mark.asyncio
async def test_initialize_connectivity_failure_returns_false(openai_config: Config) -> None:
    class _FailingModels:
        async def list(self, **_: Any) -> Any:
            raise _StatusError(401)

    provider = OpenAIProvider()
    provider._client = openai_client()
    provider._client.models = _FailingModels()

    ok = await provider.initialize(openai_config)

    assert ok is False
    assert isinstance(provider.last_error, AuthError)
    assert provider.last_error.phase == "initialize"


@pytest.mark.asyncio
async def test_initialize_succeeds_after_connectivity_check(anthropic_config: Config) -> None:
    provider = AnthropicProvider()
    client = anthropic_client(FakeEndpoint())
    provider._client = client

    assert await provider.initialize(anthropic_config) is True
    assert provider.is_ready
    assert client.models.calls == [{"limit": 1}]


@pytest.mark.asyncio
async def test_send_before_initialize_raises_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        await OpenAIProvider().send_message_with_tools([Message.user("hi")])


def test_refresh_rejects_a_different_backend(openai_config: Config) -> None:
    provider = make_ready(OpenAIProvider(), openai_config, openai_client())
    with pytest.raises(ConfigurationError):
        provider.refresh(Config(provider="gemini", model=GEMINI_MODEL, api_key="k"))


def test_refresh_swaps_the_snapshot(openai_config: Config) -> None:
    provider = make_ready(OpenAIProvider(), openai_config, openai_client())
    provider.refresh(Config(provider="openai", model="gpt-4o-mini", api_key="k"))
    assert provider.model_name == "gpt-4o-mini"


def test_create_provider_rejects_unknown_names() -> None:
    with pytest.raises(ConfigurationError, match="Unknown provider"):
        create_provider("cohere")


def test_create_provider_returns_uninitialized_adapter() -> None:
    provider = create_provider("gemini")
    assert isinstance(provider, GeminiProvider)
    assert provider.is_ready is False


@pytest.mark.asyncio
async def test_connect_uses_mock_provider_in_mock_mode(mock_config: Config) -> None:
    provider = await connect(mock_config)
    assert isinstance(provider, MockProvider)
    assert provider.is_ready


@pytest.mark.asyncio
async def test_connect_falls_back_to_next_provider(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "anthropic-key")

    async def _no_check_connectivity(self: AnthropicProvider) -> None:
        return None

    monkeypatch.setattr(AnthropicProvider, "_check_connectivity", _no_check_connectivity)

    provider = await connect(
        Config(provider="openai", model=OPENAI_MODEL), fallbacks=["anthropic"]
    )

    assert isinstance(provider, AnthropicProvider)
    assert provider.config is not None
    assert provider.config.model == "claude-3-5-sonnet-20241022"
    assert provider.config.api_key == "anthropic-key"


@pytest.mark.asyncio
async def test_connect_raises_last_error_when_every_backend_fails() -> None:
    with pytest.raises(AuthError, match="gemini"):
        await connect(Config(provider="openai", model=OPENAI_MODEL), fallbacks=["gemini"])


# =============================================================================
# Shared helpers
# =============================================================================


def test_resolve_tool_name_scans_backwards_for_the_call_id() -> None:
    assert resolve_tool_name(TOOL_TURN, 3, "call_1") == "read_file"
    assert resolve_tool_name(TOOL_TURN, 3, "call_missing") == UNKNOWN_FUNCTION_NAME


def test_tool_call_with_bad_json_keeps_raw_arguments() -> None:
    call = ToolCall(id="c", name="x", arguments="{not json")
    assert call.parsed_arguments() is None
    assert call.arguments == "{not json"


def test_message_validation() -> None:
    with pytest.raises(ConfigurationError):
        Message(role="tool", content="x")
    with pytest.raises(ConfigurationError):
        Message(role="user", content="x", tool_calls=(ToolCall(id="a", name="b"),))
    with pytest.raises(ConfigurationError):
        Message(role="robot", content="x")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_send_tool_results_appends_tool_messages(mock_config: Config) -> None:
    provider = MockProvider(["done"])
    await provider.initialize(mock_config)

    response = await provider.send_tool_results(TOOL_TURN[:3], [("call_1", "hello")])

    assert response.content == "done"
    sent = provider.calls[-1]["messages"]
    assert sent[-1] == Message.tool("call_1", "hello")


# =============================================================================
# OpenAI (Chat Completions)
# =============================================================================


def test_openai_convert_messages_shapes(openai_config: Config) -> None:
    provider = make_ready(OpenAIProvider(), openai_config, openai_client())

    wire = provider.convert_messages(TOOL_TURN)

    assert wire[0] == {"role": "system", "content": "You are terse."}
    assert wire[2] == {
        "role": "assistant",
        "content": "Reading it.",
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "read_file", "arguments": '{"path": "a.txt"}'},
            }
        ],
    }
    assert wire[3] == {"role": "tool", "tool_call_id": "call_1", "content": "hello"}


@pytest.mark.asyncio
async def test_openai_send_characterizes_request_and_parses_tool_calls(
    openai_config: Config,
) -> None:
    chat = FakeEndpoint(
        [
            chat_completion(
                content=None,
                tool_calls=[("call_9", "read_file", '{"path": "b.txt"}')],
                finish_reason="tool_calls",
                usage={"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16},
            )
        ]
    )
    provider = make_ready(OpenAIProvider(), openai_config, openai_client(chat=chat))
    seen: list[tuple[str, Any]] = []

    response = await provider.send_message_with_tools(
        [Message.user("read b")],
        [READ_FILE],
        on_tool_call=lambda name, args: seen.append((name, args)),
    )

    kwargs = chat.last_kwargs
    assert kwargs["model"] == OPENAI_MODEL
    assert kwargs["max_tokens"] == 8000
    assert kwargs["tool_choice"] == "auto"
    assert kwargs["tools"][0]["function"]["name"] == "read_file"
    assert response.tool_calls == (
        ToolCall(id="call_9", name="read_file", arguments='{"path": "b.txt"}'),
    )
    assert response.finish_reason == "tool_calls"
    assert response.usage is not None
    assert response.usage.total_tokens == 16
    assert seen == [("read_file", {"path": "b.txt"})]


def test_openai_reasoning_models_use_max_completion_tokens() -> None:
    config = Config(provider="openai", model="o3-mini", api_key="k")
    provider = make_ready(OpenAIProvider(), config, openai_client())

    kwargs = provider._chat_kwargs([Message.user("hi")], [])

    assert "max_tokens" not in kwargs
    assert kwargs["max_completion_tokens"] == 8000
    assert provider.capabilities.reasoning is True


@pytest.mark.asyncio
async def test_openai_rejects_mismatched_tool_ids_before_sending(
    openai_config: Config,
) -> None:
    chat = FakeEndpoint([chat_completion()])
    provider = make_ready(OpenAIProvider(), openai_config, openai_client(chat=chat))
    history = [*TOOL_TURN[:3], Message.tool("call_other", "x")]

    with pytest.raises(ToolCallIdMismatchError) as exc:
        await provider.send_message_with_tools(history, [READ_FILE])

    assert exc.value.tool_call_id == "call_other"
    assert chat.calls == []


@pytest.mark.asyncio
async def test_openai_empty_choices_raise_api_error(openai_config: Config) -> None:
    chat = FakeEndpoint([chat_completion()])
    chat.script[0].choices = []
    provider = make_ready(OpenAIProvider(), openai_config, openai_client(chat=chat))

    with pytest.raises(APIError, match="no choices"):
        await provider.send_message_with_tools([Message.user("hi")])


@pytest.mark.asyncio
async def test_openai_sdk_errors_are_wrapped(openai_config: Config) -> None:
    chat = FakeEndpoint([_StatusError(429)])
    provider = make_ready(OpenAIProvider(), openai_config, openai_client(chat=chat))

    with pytest.raises(RateLimitError) as exc:
        await provider.send_message_with_tools([Message.user("hi")])

    assert exc.value.provider == "openai"
    assert exc.value.phase == "sendMessageWithTools"


@pytest.mark.asyncio
async def test_openai_aborted_before_send_makes_no_request(
    openai_config: Config,
) -> None:

    chat = FakeEndpoint([chat_completion()])
    provider = make_ready(OpenAIProvider(), openai_config, openai_client(chat=chat))
    abort = asyncio.Event()
    abort.set()

    response = await provider.send_message_with_tools([Message.user("hi")], abort=abort)

    assert response.aborted is True
    assert response.finish_reason == "aborted"
    assert chat.calls == []


# =============================================================================
# OpenAI (Responses API)
# =============================================================================


def _responses_result(**fields: Any) -> Any:

    defaults: dict[str, Any] = {
        "id": "resp_1",
        "output_text": "",
        "output": [],
        "status": "completed",
        "usage": {"input_tokens": 7, "output_tokens": 3},
    }
    defaults.update(fields)
    return SimpleNamespace(**defaults)


@pytest.mark.asyncio
async def test_responses_api_returns_continuation_token_and_tool_calls() -> None:

    config = Config(provider="openai", model="o3-mini", api_key="k")
    responses = FakeEndpoint(
        [
            _responses_result(
                output=[
                    SimpleNamespace(
                        type="function_call",
                        call_id="fc_1",
                        name="read_file",
                        arguments='{"path": "a"}',
                    )
                ]
            )
        ]
    )
    chat = FakeEndpoint()
    provider = make_ready(
        OpenAIProvider(), config, openai_client(chat=chat, responses=responses)
    )

    response = await provider.send_message_with_tools(
        [Message.system("sys"), Message.user("go")], [READ_FILE]
    )

    assert response.response_id == "resp_1"
    assert response.tool_calls == (
        ToolCall(id="fc_1", name="read_file", arguments='{"path": "a"}'),
    )
    assert response.finish_reason == "tool_calls"
    kwargs = responses.last_kwargs
    assert kwargs["instructions"] == "sys"
    assert kwargs["reasoning"] == {"effort": "medium"}
    assert kwargs["tools"][0] == {
        "type": "function",
        "name": "read_file",
        "description": "Read a file",
        "parameters": READ_FILE["input_schema"],
        "strict": False,
    }
    assert chat.calls == []


@pytest.mark.asyncio
async def test_responses_failure_falls_back_to_chat_once() -> None:
    config = Config(provider="openai", model=OPENAI_MODEL, api_key="k", use_responses_api=True)
    responses = FakeEndpoint([RuntimeError("responses unavailable")])
    chat = FakeEndpoint([chat_completion(content="from chat")])
    provider = make_ready(
        OpenAIProvider(), config, openai_client(chat=chat, responses=responses)
    )

    response = await provider.send_message_with_tools([Message.user("hi")])

    assert response.content == "from chat"
    assert response.response_id is None
    assert len(responses.calls) == 1
    assert len(chat.calls) == 1


@pytest.mark.asyncio
async def test_responses_continuation_replays_only_latest_tool_round() -> None:
    config = Config(provider="openai", model="o3-mini", api_key="k")
    responses = FakeEndpoint([_responses_result(output_text="done")])
    provider = make_ready(OpenAIProvider(), config, openai_client(responses=responses))

    await provider.send_message_with_tools(TOOL_TURN, [READ_FILE], continuation_token="resp_0")

    kwargs = responses.last_kwargs
    assert kwargs["previous_response_id"] == "resp_0"
    assert kwargs["input"] == [
        {
            "type": "function_call",
            "call_id": "call_1",
            "name": "read_file",
            "arguments": '{"path": "a.txt"}',
        },
        {
            "role": "assistant",
            "content": [{"type": "output_text", "text": "Reading it."}],
        },
        {"type": "function_call_output", "call_id": "call_1", "output": "hello"},
    ]


# =============================================================================
# Anthropic
# =============================================================================


def test_anthropic_convert_messages_merges_tool_results(anthropic_config: Config) -> None:
    provider = make_ready(AnthropicProvider(), anthropic_config, anthropic_client(FakeEndpoint()))
    history = [
        Message.user("compare"),
        Message.assistant(
            None,
            [
                ToolCall(id="toolu_1", name="read_file", arguments='{"path": "a"}'),
                ToolCall(id="toolu_2", name="read_file", arguments="not json"),
            ],
        ),
        Message.tool("toolu_1", "A"),
        Message.tool("toolu_2", "B"),
    ]

    wire = provider.convert_messages([Message.system("sys"), *history])

    assert [m["role"] for m in wire] == ["user", "assistant", "user"]
    assert wire[1]["content"] == [
        {"type": "tool_use", "id": "toolu_1", "name": "read_file", "input": {"path": "a"}},
        {"type": "tool_use", "id": "toolu_2", "name": "read_file", "input": {}},
    ]
    assert wire[2]["content"] == [
        {"type": "tool_result", "tool_use_id": "toolu_1", "content": "A"},
        {"type": "tool_result", "tool_use_id": "toolu_2", "content": "B"},
    ]


@pytest.mark.asyncio
async def test_anthropic_send_characterizes_request(anthropic_config: Config) -> None:
    messages = FakeEndpoint(
        [
            anthropic_message(
                [
                    {"type": "text", "text": "Let me check."},
                    {"type": "tool_use", "id": "toolu_9", "name": "read_file", "input": {"path": "x"}},
                ],
                stop_reason="tool_use",
            )
        ]
    )
    provider = make_ready(AnthropicProvider(), anthropic_config, anthropic_client(messages))

    response = await provider.send_message_with_tools(
        [Message.system("Be brief."), Message.user("read x")], [READ_FILE]
    )

    kwargs = messages.last_kwargs
    assert kwargs["model"] == ANTHROPIC_MODEL
    assert kwargs["max_tokens"] == 8000
    assert kwargs["system"] == [{"type": "text", "text": "Be brief."}]
    assert kwargs["messages"] == [
        {"role": "user", "content": [{"type": "text", "text": "read x"}]}
    ]
    assert kwargs["tools"][0]["input_schema"] == READ_FILE["input_schema"]
    assert response.content == "Let me check."
    assert response.tool_calls == (
        ToolCall(id="toolu_9", name="read_file", arguments=json.dumps({"path": "x"})),
    )
    assert response.finish_reason == "tool_calls"


@pytest.mark.asyncio
async def test_anthropic_places_cache_markers_for_large_prompts(
    anthropic_config: Config,
) -> None:
    messages = FakeEndpoint(
        [
            anthropic_message(
                [{"type": "text", "text": "ok"}],
                usage={"input_tokens": 5, "output_tokens": 1, "cache_creation_input_tokens": 1300},
            )
        ]
    )
    provider = make_ready(AnthropicProvider(), anthropic_config, anthropic_client(messages))
    system = "s" * 6000

    response = await provider.send_message_with_tools(
        [Message.system(system), Message.user("q")]
    )

    kwargs = messages.last_kwargs
    assert kwargs["system"][0]["cache_control"] == {"type": "ephemeral"}
    assert kwargs["messages"][-1]["content"][-1]["cache_control"] == {"type": "ephemeral"}
    assert [b.type for b in response.cache_breakpoints] == ["system", "conversation"]
    assert response.usage is not None
    assert response.usage.cache_creation_input_tokens == 1300


@pytest.mark.asyncio
async def test_anthropic_strict_cache_validation_raises() -> None:
    config = Config(
        provider="anthropic",
        model=ANTHROPIC_MODEL,
        api_key="k",
        strict_cache_validation=True,
    )
    messages = FakeEndpoint([anthropic_message([{"type": "text", "text": "ok"}])])
    provider = make_ready(AnthropicProvider(), config, anthropic_client(messages))

    with pytest.raises(CacheValidationError):
        await provider.send_message_with_tools(
            [Message.system("s" * 6000), Message.user("q")]
        )


# =============================================================================
# Gemini
# =============================================================================


class _FakeGeminiModels:
    def __init__(self, response: Any) -> None:
        self.response = response
        self.calls: list[dict[str, Any]] = []

    async def generate_content(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return self.response


def _gemini_client(models: Any) -> Any:

    return SimpleNamespace(aio=SimpleNamespace(models=models))


def test_gemini_convert_messages_tags_function_responses_by_name(
    gemini_config: Config,
) -> None:
    provider = make_ready(GeminiProvider(), gemini_config, _gemini_client(None))

    contents = provider.convert_messages(TOOL_TURN)

    assert [c.role for c in contents] == ["user", "model", "user"]
    assert contents[1].parts[0].text == "Reading it."
    assert contents[1].parts[1].function_call.name == "read_file"
    assert contents[1].parts[1].function_call.args == {"path": "a.txt"}
    response_part = contents[2].parts[0].function_response
    assert response_part.name == "read_file"
    assert response_part.response == {"result": "hello"}


@pytest.mark.asyncio
async def test_gemini_send_characterizes_config_and_parses_calls(
    gemini_config: Config,
) -> None:
    response = types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(
                    role="model",
                    parts=[
                        types.Part(
                            function_call=types.FunctionCall(
                                name="read_file", args={"path": "a.txt"}
                            )
                        )
                    ],
                ),
                finish_reason=types.FinishReason.STOP,
            )
        ],
        usage_metadata=types.GenerateContentResponseUsageMetadata(
            prompt_token_count=5, candidates_token_count=3, total_token_count=8
        ),
    )
    models = _FakeGeminiModels(response)
    provider = make_ready(GeminiProvider(), gemini_config, _gemini_client(models))

    result = await provider.send_message_with_tools(
        [Message.system("sys"), Message.user("read a")], [READ_FILE]
    )

    call = models.calls[-1]
    assert call["model"] == GEMINI_MODEL
    config = call["config"]
    assert config.system_instruction == "sys"
    assert config.max_output_tokens == 8000
    declaration = config.tools[0].function_declarations[0]
    assert declaration.name == "read_file"
    assert config.automatic_function_calling.disable is True

    (tool_call,) = result.tool_calls
    assert tool_call.name == "read_file"
    assert tool_call.id.startswith("call_")
    assert json.loads(tool_call.arguments) == {"path": "a.txt"}
    assert result.finish_reason == "tool_calls"
    assert result.usage is not None
    assert result.usage.total_tokens == 8


@pytest.mark.asyncio
async def test_gemini_text_response(gemini_config: Config) -> None:
    response = types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(role="model", parts=[types.Part(text="Hi there")]),
                finish_reason=types.FinishReason.MAX_TOKENS,
            )
        ]
    )
    provider = make_ready(
        GeminiProvider(), gemini_config, _gemini_client(_FakeGeminiModels(response))
    )

    result = await provider.send_message_with_tools([Message.user("hi")])

    assert result.content == "Hi there"
    assert result.tool_calls == ()
    assert result.finish_reason == "length"


class _LineRange(BaseModel):
    start: int
    end: int


class _ReadArgs(BaseModel):
    path: str
    lines: _LineRange | None = None


@pytest.mark.asyncio
async def test_gemini_declares_tools_built_from_nested_models(
    gemini_config: Config,
) -> None:
    response = types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(role="model", parts=[types.Part(text="ok")]),
                finish_reason=types.FinishReason.STOP,
            )
        ]
    )
    models = _FakeGeminiModels(response)
    provider = make_ready(GeminiProvider(), gemini_config, _gemini_client(models))

    await provider.send_message_with_tools(
        [Message.user("read")],
        [{"name": "read", "description": "Read lines", "input_schema": _ReadArgs}],
    )

    declaration = models.calls[-1]["config"].tools[0].function_declarations[0]
    lines = declaration.parameters.properties["lines"]
    object_branch = next(s for s in lines.any_of if s.properties)
    assert set(object_branch.properties) == {"start", "end"}
    assert object_branch.properties["start"].type == types.Type.INTEGER


@pytest.mark.asyncio
async def test_gemini_rejected_declarations_raise_schema_error(
    gemini_config: Config,
) -> None:
    models = _FakeGeminiModels(None)
    provider = make_ready(GeminiProvider(), gemini_config, _gemini_client(models))
    tool = {
        "name": "odd",
        "description": "Odd schema",
        "input_schema": {
            "type": "object",
            "properties": {"x": {"type": "string", "x-vendor-flag": True}},
        },
    }

    with pytest.raises(SchemaError, match="odd"):
        await provider.send_message_with_tools([Message.user("go")], [tool])
    assert models.calls == []


    assert result.finish_reason == "length"


# =============================================================================
# OpenRouter (bracket calls)
# =============================================================================


@pytest.mark.asyncio
async def test_openrouter_llama_recovers_bracket_calls() -> None:
    config = Config(provider="openrouter", model=LLAMA_MODEL, api_key="k")
    chat = FakeEndpoint(
        [chat_completion(content='Checking.\n[read_file(path="src/main.py")]')]
    )
    provider = make_ready(OpenRouterProvider(), config, openai_client(chat=chat))

    response = await provider.send_message_with_tools(
        [Message.system("sys"), Message.user("show main")], [READ_FILE]
    )

    (call,) = response.tool_calls
    assert call.name == "read_file"
    assert json.loads(call.arguments) == {"path": "src/main.py"}
    assert call.id.startswith("llama-") and call.id.endswith("-0")
    assert response.finish_reason == "tool_calls"
    system = chat.last_kwargs["messages"][0]
    assert system["role"] == "system"
    assert system["content"].startswith("sys")
    assert "read_file" in system["content"]
    assert provider.capabilities.native_tool_calls is False


@pytest.mark.asyncio
async def test_openrouter_structured_tool_calls_win() -> None:
    config = Config(provider="openrouter", model=LLAMA_MODEL, api_key="k")
    chat = FakeEndpoint(
        [
            chat_completion(
                content='[other(x="1")]',
                tool_calls=[("call_1", "read_file", '{"path": "a"}')],
                finish_reason="tool_calls",
            )
        ]
    )
    provider = make_ready(OpenRouterProvider(), config, openai_client(chat=chat))

    response = await provider.send_message_with_tools([Message.user("go")], [READ_FILE])

    assert [c.name for c in response.tool_calls] == ["read_file"]


@pytest.mark.asyncio
async def test_openrouter_non_llama_models_skip_bracket_parsing() -> None:
    config = Config(provider="openrouter", model="mistralai/mixtral-8x7b", api_key="k")
    chat = FakeEndpoint([chat_completion(content='[read_file(path="a")]')])
    provider = make_ready(OpenRouterProvider(), config, openai_client(chat=chat))

    response = await provider.send_message_with_tools([Message.user("go")], [READ_FILE])

    assert response.tool_calls == ()
    assert response.content == '[read_file(path="a")]'


def test_openrouter_client_points_at_openrouter() -> None:
    config = Config(provider="openrouter", model=LLAMA_MODEL, api_key="k")
    provider = OpenRouterProvider()
    provider.config = config

    kwargs = provider._client_kwargs()

    assert kwargs["base_url"] == "https://openrouter.ai/api/v1"
    assert "X-Title" in kwargs["default_headers"]


# =============================================================================
# Mock
# =============================================================================


@pytest.mark.asyncio
async def test_mock_provider_replays_script_then_echoes(mock_config: Config) -> None:
    provider = MockProvider([FunctionCallResponse(content="scripted")])
    await provider.initialize(mock_config)

    first = await provider.send_message_with_tools([Message.user("one")])
    second = await provider.send_message_with_tools([Message.user("two")])

    assert first.content == "scripted"
    assert second.content == "echo: two"
    assert len(provider.calls) == 2
