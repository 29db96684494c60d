"""
Tests for the model service adapters.

SDK clients are replaced by recorders that capture the keyword arguments of the single SDK call and
return real SDK response objects (or raise real SDK exceptions), so no network access happens.
"""

import threading
import time
from types import SimpleNamespace
from typing import Any

import anthropic
import httpx
import openai
import pytest
from google.genai import (
    errors as genai_errors,
    types as genai_types,
)
from conftest import Answer
from openai.types.chat import ChatCompletion

from agentguard.agent.model_interface import (
    AnthropicAdapter,
    BaseModelAdapter,
    GeminiAdapter,
    ModelRequest,
    OpenAIAdapter,
    invoke_model,
    load_adapter,
)
from agentguard.agent.observability import MemoryTurnLogger
from agentguard.agent.turn import AgentTurnRunner
from agentguard.core.errors import (
    ModelError,
    ModelErrorKind,
    OutputErrorKind,
)
from agentguard.core.schema import (
    FunctionCall,
    FunctionResponse,
    GenerationConfig,
    Message,
    Part,
    ResponseFormat,
)
from agentguard.core.session import ConversationSession
from agentguard.guards.input_guard import InputPolicy
from agentguard.tools import tool

SCHEMA = {
    "title": "Answer",
    "type": "object",
    "properties": {"answer": {"type": "string"}},
    "required": ["answer"],
}


@tool(description="Add two integers.")
def add(a: int, b: int) -> int:
    return a + b


class _Recorder:
    """Callable standing in for one SDK method."""

    def __init__(self, result: Any) -> None:
        self.result = result
        self.kwargs: dict[str, Any] = {}

    def __call__(self, **kwargs: Any) -> Any:
        self.kwargs = kwargs
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


def _request(**kwargs: Any) -> ModelRequest:
    kwargs.setdefault("contents", (Message.user("Hello"),))
    return ModelRequest(**kwargs)


def _tool_history() -> tuple:
    call = FunctionCall(id="call_1", name="add", args={"a": 1, "b": 2})
    return (
        Message.user("add 1 and 2"),
        Message(role="model", parts=[Part(function_call=call)]),
        Message(
            role="user",
            parts=[
                Part(
                    function_response=FunctionResponse(
                        id="call_1", name="add", response={"result": 3}
                    )
                )
            ],
        ),
    )


_OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
_ANTHROPIC_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


# ---------------------------------------------------------------------------
# Registry and invocation
# ---------------------------------------------------------------------------
def test_load_adapter_by_name() -> None:
    """Registered names resolve to adapter instances without creating SDK clients."""

    assert isinstance(load_adapter("gemini"), GeminiAdapter)
    assert isinstance(load_adapter("OpenAI"), OpenAIAdapter)
    adapter = load_adapter("anthropic", model="claude-test")
    assert isinstance(adapter, AnthropicAdapter)
    assert adapter.model == "claude-test"


def test_load_unknown_adapter() -> None:
    """Unknown adapter names are a configuration error."""

    with pytest.raises(ValueError, match="not registered"):
        load_adapter("does-not-exist")


class _SlowAdapter(BaseModelAdapter):
    name = "slow"

    @classmethod
    def default_model(cls) -> str:
        return "slow"

    def generate(self, request: ModelRequest):
        time.sleep(0.5)
        raise AssertionError("response should have been discarded")


def test_invoke_model_deadline() -> None:
    """A deadline shorter than the call resolves to TIMEOUT."""

    with pytest.raises(ModelError) as info:
        invoke_model(_SlowAdapter(), _request(), deadline=0.05)
    assert info.value.kind is ModelErrorKind.TIMEOUT


def test_invoke_model_expired_deadline() -> None:
    """A deadline that already passed fails before the call starts."""

    with pytest.raises(ModelError, match="before the model call started"):
        invoke_model(_SlowAdapter(), _request(), deadline=0)


def test_invoke_model_cancel() -> None:
    """Setting the cancel event resolves to TIMEOUT."""

    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        with pytest.raises(ModelError) as info:
            invoke_model(_SlowAdapter(), _request(), cancel=cancel)
    finally:
        timer.cancel()
    assert info.value.kind is ModelErrorKind.TIMEOUT


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------
def _gemini(result: Any) -> tuple[GeminiAdapter, _Recorder]:
    recorder = _Recorder(result)
    client = SimpleNamespace(models=SimpleNamespace(generate_content=recorder))
    return GeminiAdapter(model="gemini-test", client=client), recorder


def _gemini_response(*parts: genai_types.Part) -> genai_types.GenerateContentResponse:
    return genai_types.GenerateContentResponse(
        candidates=[
            genai_types.Candidate(content=genai_types.Content(role="model", parts=list(parts)))
        ],
        model_version="gemini-test-001",
        usage_metadata=genai_types.GenerateContentResponseUsageMetadata(
            prompt_token_count=3, candidates_token_count=4, total_token_count=7
        ),
    )


def test_gemini_text_response() -> None:
    """Text, model version and usage are normalized; thought parts are skipped."""

    adapter, recorder = _gemini(
        _gemini_response(
            genai_types.Part(text="thinking...", thought=True),
            genai_types.Part(text='{"answer": "hi"}'),
        )
    )
    response = adapter.generate(_request())

    assert response.text == '{"answer": "hi"}'
    assert response.candidates == ['{"answer": "hi"}']
    assert response.model_version == "gemini-test-001"
    assert response.usage.model_dump() == {
        "prompt_tokens": 3,
        "output_tokens": 4,
        "total_tokens": 7,
    }
    assert recorder.kwargs["model"] == "gemini-test"
    assert recorder.kwargs["config"] is None


def test_gemini_config_mapping() -> None:
    """Generation options, schema and tools become a GenerateContentConfig."""

    adapter, recorder = _gemini(_gemini_response(genai_types.Part(text="{}")))
    config = GenerationConfig(
        temperature=0.2,
        top_k=20,
        thinking_budget=0,
        system_instruction="be terse",
        response_format=ResponseFormat.JSON,
    )
    adapter.generate(_request(config=config, response_schema=SCHEMA, tools=(add,)))

    sent = recorder.kwargs["config"]
    assert sent.temperature == 0.2
    assert sent.top_k == 20
    assert sent.top_p is None
    assert sent.system_instruction == "be terse"
    assert sent.thinking_config.thinking_budget == 0
    assert sent.response_mime_type == "application/json"
    assert sent.response_json_schema == SCHEMA
    declaration = sent.tools[0].function_declarations[0]
    assert declaration.name == "add"
    assert declaration.parameters_json_schema["required"] == ["a", "b"]
    assert sent.automatic_function_calling.disable is True


def test_gemini_function_call_and_history() -> None:
    """Function calls are parsed and tool history is sent back as content parts."""

    adapter, recorder = _gemini(
        _gemini_response(
            genai_types.Part(
                function_call=genai_types.FunctionCall(name="add", args={"a": 1, "b": 2})
            )
        )
    )
    response = adapter.generate(_request(contents=_tool_history(), tools=(add,)))

    assert response.text is None
    [call] = response.function_calls
    assert call.name == "add"
    assert call.args == {"a": 1, "b": 2}
    assert call.id.startswith("call_")

    contents = recorder.kwargs["contents"]
    assert [c.role for c in contents] == ["user", "model", "user"]
    assert contents[1].parts[0].function_call.name == "add"
    assert contents[2].parts[0].function_response.response == {"result": 3}


@pytest.mark.parametrize(
    "exc, kind",
    [
        (
            genai_errors.ClientError(
                429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}}
            ),
            ModelErrorKind.SERVICE_REJECTED,
        ),
        (httpx.ReadTimeout("slow"), ModelErrorKind.TIMEOUT),
        (httpx.ConnectError("refused"), ModelErrorKind.UNREACHABLE),
    ],
)
def test_gemini_error_mapping(exc: Exception, kind: ModelErrorKind) -> None:
    """SDK and transport errors are classified."""

    adapter, _ = _gemini(exc)
    with pytest.raises(ModelError) as info:
        adapter.generate(_request())
    assert info.value.kind is kind
    assert info.value.__cause__ is exc


def test_gemini_rejection_keeps_status() -> None:
    """SERVICE_REJECTED carries the HTTP status."""

    adapter, _ = _gemini(genai_errors.ServerError(503, {"error": {"message": "overloaded"}}))
    with pytest.raises(ModelError) as info:
        adapter.generate(_request())
    assert info.value.extra["status"] == 503


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------
def _openai(result: Any) -> tuple[OpenAIAdapter, _Recorder]:
    recorder = _Recorder(result)
    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=recorder)))
    return OpenAIAdapter(model="gpt-test", client=client), recorder


def _completion(message: dict) -> ChatCompletion:
    return ChatCompletion.model_validate(
        {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": "gpt-test-2024",
            "choices": [{"index": 0, "finish_reason": "stop", "message": message}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 6, "total_tokens": 11},
        }
    )


def test_openai_request_mapping() -> None:
    """Options, JSON schema format, tools and tool history map onto chat completions."""

    adapter, recorder = _openai(_completion({"role": "assistant", "content": '{"answer": "3"}'}))
    config = GenerationConfig(
        temperature=0.5,
        top_k=5,
        candidate_count=2,
        max_output_tokens=100,
        system_instruction="sys",
        response_format=ResponseFormat.JSON,
    )
    response = adapter.generate(
        _request(contents=_tool_history(), config=config, response_schema=SCHEMA, tools=(add,))
    )

    kwargs = recorder.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["temperature"] == 0.5
    assert kwargs["n"] == 2
    assert kwargs["max_completion_tokens"] == 100
    assert "top_k" not in kwargs
    assert kwargs["response_format"]["type"] == "json_schema"
    assert kwargs["response_format"]["json_schema"]["name"] == "Answer"
    assert kwargs["tools"][0]["function"]["name"] == "add"
    roles = [m["role"] for m in kwargs["messages"]]
    assert roles == ["system", "user", "assistant", "tool"]
    assert kwargs["messages"][2]["tool_calls"][0]["id"] == "call_1"
    assert kwargs["messages"][3]["tool_call_id"] == "call_1"

    assert response.text == '{"answer": "3"}'
    assert response.model_version == "gpt-test-2024"
    assert response.usage.total_tokens == 11


def test_openai_tool_calls_parsed() -> None:
    """Tool calls keep their ids and decoded arguments."""

    adapter, _ = _openai(
        _completion(
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "tool_9",
                        "type": "function",
                        "function": {"name": "add", "arguments": '{"a": 4, "b": 5}'},
                    }
                ],
            }
        )
    )
    [call] = adapter.generate(_request(tools=(add,))).function_calls
    assert (call.id, call.name, call.args) == ("tool_9", "add", {"a": 4, "b": 5})


@pytest.mark.parametrize(
    "exc, kind",
    [
        (openai.APITimeoutError(request=_OPENAI_REQUEST), ModelErrorKind.TIMEOUT),
        (openai.APIConnectionError(request=_OPENAI_REQUEST), ModelErrorKind.UNREACHABLE),
        (
            openai.RateLimitError(
                "rate limited",
                response=httpx.Response(429, request=_OPENAI_REQUEST),
                body=None,
            ),
            ModelErrorKind.SERVICE_REJECTED,
        ),
    ],
)
def test_openai_error_mapping(exc: Exception, kind: ModelErrorKind) -> None:
    """SDK errors are classified."""

    adapter, _ = _openai(exc)
    with pytest.raises(ModelError) as info:
        adapter.generate(_request())
    assert info.value.kind is kind


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------
def _anthropic(result: Any) -> tuple[AnthropicAdapter, _Recorder]:
    recorder = _Recorder(result)
    client = SimpleNamespace(messages=SimpleNamespace(create=recorder))
    return AnthropicAdapter(model="claude-test", client=client), recorder


def _anthropic_message(*content: dict) -> anthropic.types.Message:
    return anthropic.types.Message.model_validate(
        {
            "id": "msg_1",
            "type": "message",
            "role": "assistant",
            "model": "claude-test-2024",
            "content": list(content),
            "stop_reason": "end_turn",
            "stop_sequence": None,
            "usage": {"input_tokens": 7, "output_tokens": 2},
        }
    )


def test_anthropic_request_mapping() -> None:
    """The schema travels in the system prompt; tool history becomes content blocks."""

    adapter, recorder = _anthropic(_anthropic_message({"type": "text", "text": '{"answer": "3"}'}))
    config = GenerationConfig(
        temperature=0.3,
        candidate_count=2,
        system_instruction="sys",
        response_format=ResponseFormat.JSON,
    )
    response = adapter.generate(
        _request(contents=_tool_history(), config=config, response_schema=SCHEMA, tools=(add,))
    )

    kwargs = recorder.kwargs
    assert kwargs["max_tokens"] > 0
    assert kwargs["temperature"] == 0.3
    assert "n" not in kwargs and "candidate_count" not in kwargs
    assert kwargs["system"].startswith("sys\n\n")
    assert '"required": ["answer"]' in kwargs["system"]
    assert kwargs["tools"][0]["input_schema"]["required"] == ["a", "b"]
    messages = kwargs["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[1]["content"][0]["type"] == "tool_use"
    assert messages[2]["content"][0]["tool_use_id"] == "call_1"
    assert messages[2]["content"][0]["is_error"] is False

    assert response.text == '{"answer": "3"}'
    assert response.usage.total_tokens == 9
    assert response.model_version == "claude-test-2024"


def test_anthropic_tool_use_parsed() -> None:
    """tool_use blocks become function calls."""

    adapter, _ = _anthropic(
        _anthropic_message({"type": "tool_use", "id": "toolu_1", "name": "add", "input": {"a": 1}})
    )
    [call] = adapter.generate(_request()).function_calls
    assert (call.id, call.name, call.args) == ("toolu_1", "add", {"a": 1})


@pytest.mark.parametrize(
    "exc, kind",
    [
        (anthropic.APITimeoutError(request=_ANTHROPIC_REQUEST), ModelErrorKind.TIMEOUT),
        (anthropic.APIConnectionError(request=_ANTHROPIC_REQUEST), ModelErrorKind.UNREACHABLE),
        (
            anthropic.BadRequestError(
                "bad request",
                response=httpx.Response(400, request=_ANTHROPIC_REQUEST),
                body=None,
            ),
            ModelErrorKind.SERVICE_REJECTED,
        ),
    ],
)
def test_anthropic_error_mapping(exc: Exception, kind: ModelErrorKind) -> None:
    """SDK errors are classified."""

    adapter, _ = _anthropic(exc)
    with pytest.raises(ModelError) as info:
        adapter.generate(_request())
    assert info.value.kind is kind


def test_anthropic_thinking_dropped_with_tools() -> None:
    """Extended thinking is sent only when no tools are declared."""

    adapter, recorder = _anthropic(_anthropic_message({"type": "text", "text": "{}"}))
    config = GenerationConfig(thinking_budget=1024)

    adapter.generate(_request(config=config))
    assert recorder.kwargs["thinking"] == {"type": "enabled", "budget_tokens": 1024}

    adapter.generate(_request(config=config, tools=(add,)))
    assert "thinking" not in recorder.kwargs


# ---------------------------------------------------------------------------
# Retries and history replay
# ---------------------------------------------------------------------------
@pytest.mark.parametrize(
    "sdk, client_name, adapter_cls",
    [(openai, "OpenAI", OpenAIAdapter), (anthropic, "Anthropic", AnthropicAdapter)],
)
def test_failed_call_is_not_retried(
    monkeypatch: pytest.MonkeyPatch, sdk: Any, client_name: str, adapter_cls: type
) -> None:
    """A server error reaches the service exactly once."""

    seen: list = []

    def failing(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(500, json={"error": {"type": "api_error", "message": "boom"}})

    real_client = getattr(sdk, client_name)
    built: dict = {}

    def client(**kwargs: Any) -> Any:
        built.update(kwargs)
        kwargs["api_key"] = "test-key"
        transport = httpx.MockTransport(failing)
        return real_client(http_client=httpx.Client(transport=transport), **kwargs)

    monkeypatch.setattr(sdk, client_name, client)

    with pytest.raises(ModelError) as info:
        adapter_cls(model="test-model").generate(_request())

    assert info.value.kind is ModelErrorKind.SERVICE_REJECTED
    assert built["max_retries"] == 0
    assert len(seen) == 1


def test_gemini_skips_empty_model_turns() -> None:
    """A model turn without text is committed but never replayed as an empty part."""

    adapter, recorder = _gemini(
        _gemini_response(genai_types.Part(text="pondering", thought=True))
    )
    session = ConversationSession()
    runner = AgentTurnRunner(adapter, trace=MemoryTurnLogger(), policy=InputPolicy())

    first = runner.run(session, "Hello", Answer)
    assert first.error_kind is OutputErrorKind.MALFORMED_PAYLOAD
    assert [m.role for m in session.history] == ["user", "model"]

    runner.run(session, "Again", Answer)
    contents = recorder.kwargs["contents"]
    assert [c.role for c in contents] == ["user", "user"]
    assert [c.parts[0].text for c in contents] == ["Hello", "Again"]
