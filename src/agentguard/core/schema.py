"""
Schema definitions for caller <-> orchestrator <-> model messages.

These data models serve as the contract between the caller, the agent turn orchestrator, and the
model adapters.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.
"""

import uuid
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from agentguard.core.errors import (
    InputErrorKind,
    ModelErrorKind,
    OutputErrorKind,
)

Role = Literal["user", "model"]


# ---------------------------------------------------------------------------
# Conversation content
# ---------------------------------------------------------------------------
class FunctionCall(BaseModel):
    """A call that the model wants the orchestrator to execute."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")
    name: str = Field(..., description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Keyword arguments for the tool")


class FunctionResponse(BaseModel):
    """The outcome of a tool call, sent back to the model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    response: Dict[str, Any]


class Part(BaseModel):
    """One piece of message content: text, a function call or a function response."""

    model_config = ConfigDict(frozen=True)

    text: str | None = None
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "Part":
        values = (self.text, self.function_call, self.function_response)
        if sum(v is not None for v in values) != 1:
            raise ValueError("a part carries exactly one of text, function_call, function_response")
        return self


class Message(BaseModel):
    """A single entry in a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Role
    parts: List[Part] = Field(..., min_length=1)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", parts=[Part(text=text)])

    @classmethod
    def model(cls, text: str) -> "Message":
        return cls(role="model", parts=[Part(text=text)])

    @property
    def text(self) -> str | None:
        """Concatenated text parts, or *None* when the message has none."""
        texts = [p.text for p in self.parts if p.text is not None]
        return "".join(texts) if texts else None

    @property
    def function_calls(self) -> List[FunctionCall]:
        return [p.function_call for p in self.parts if p.function_call is not None]


# ---------------------------------------------------------------------------
# Generation configuration
# ---------------------------------------------------------------------------
class ResponseFormat(str, Enum):
    """How the model should shape its answer."""

    TEXT = "text"
    JSON = "json"


class GenerationConfig(BaseModel):
    """
    Sampling and formatting options forwarded to the model service.

    Every field is optional.  Unset fields are never sent, so the service applies its own defaults.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    temperature: float | None = Field(None, ge=0.0, le=2.0)
    top_p: float | None = Field(None, ge=0.0, le=1.0)
    top_k: int | None = Field(None, gt=0)
    candidate_count: int | None = Field(None, gt=0)
    max_output_tokens: int | None = Field(None, gt=0)
    thinking_budget: int | None = Field(None, ge=0)
    response_format: ResponseFormat | None = None
    system_instruction: str | None = None

    def explicit(self) -> Dict[str, Any]:
        """Return only the options the caller actually set."""
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Model responses
# ---------------------------------------------------------------------------
class UsageMetadata(BaseModel):
    """Token counters reported by the service."""

    prompt_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


class ModelResponse(BaseModel):
    """Normalized response of one ``generate`` call."""

    message: Message
    candidates: List[str] = Field(default_factory=list)
    model_version: str | None = None
    usage: UsageMetadata | None = None

    @property
    def text(self) -> str | None:
        return self.message.text

    @property
    def function_calls(self) -> List[FunctionCall]:
        return self.message.function_calls


# ---------------------------------------------------------------------------
# Turn results
# ---------------------------------------------------------------------------
class TurnState(str, Enum):
    """States of the agent turn state machine."""

    IDLE = "idle"
    INPUT_VALIDATING = "input_validating"
    INVOKING = "invoking"
    OUTPUT_VALIDATING = "output_validating"
    DONE = "done"
    FAILED = "failed"


class TurnSuccess(BaseModel):
    """A turn that produced a value conforming to the schema contract."""

    ok: Literal[True] = True
    value: Any
    raw_text: str | None = None
    model_version: str | None = None
    usage: UsageMetadata | None = None


class TurnFailure(BaseModel):
    """A turn that ended in a classified failure."""

    ok: Literal[False] = False
    category: Literal["input", "model", "output"]
    error_kind: Union[InputErrorKind, ModelErrorKind, OutputErrorKind]
    detail: str
    failed_in: TurnState
    raw_text: str | None = None


TurnResult = Union[TurnSuccess, TurnFailure]
