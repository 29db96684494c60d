"""
Shared test doubles.

``ScriptedAdapter`` stands in for a hosted model service: it replays a fixed list of responses
(or raises scripted exceptions) and records every request it was given.
"""

from typing import (
    Any,
    Dict,
    List,
    Tuple,
)

import pytest
from pydantic import BaseModel

from agentguard.agent.model_interface import (
    BaseModelAdapter,
    ModelRequest,
)
from agentguard.agent.observability import MemoryTurnLogger
from agentguard.core.schema import (
    FunctionCall,
    Message,
    ModelResponse,
    Part,
    UsageMetadata,
)


class Answer(BaseModel):
    """Minimal schema contract: ``{answer: string}``."""

    answer: str


class ScriptedAdapter(BaseModelAdapter):
    """Replays canned responses; exceptions in the script are raised instead."""

    name = "scripted"

    def __init__(self, *responses: Any) -> None:
        super().__init__(client=object())
        self.responses: List[Any] = list(responses)
        self.requests: List[ModelRequest] = []

    @classmethod
    def default_model(cls) -> str:
        return "scripted-model"

    @property
    def calls(self) -> int:
        return len(self.requests)

    def generate(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError("ScriptedAdapter ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(request)
        return item


def text_response(text: str) -> ModelResponse:
    return ModelResponse(
        message=Message.model(text),
        candidates=[text],
        model_version="scripted-1",
        usage=UsageMetadata(prompt_tokens=3, output_tokens=5, total_tokens=8),
    )


def call_response(*calls: Tuple[str, Dict[str, Any]]) -> ModelResponse:
    parts = [Part(function_call=FunctionCall(name=name, args=args)) for name, args in calls]
    return ModelResponse(message=Message(role="model", parts=parts), model_version="scripted-1")


@pytest.fixture
def trace() -> MemoryTurnLogger:
    return MemoryTurnLogger()
