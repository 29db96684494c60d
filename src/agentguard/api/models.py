"""
Pydantic models for agentguard API requests and responses.
This module defines the request and response schemas used by the agentguard API, plus the
default structured reply the agent endpoint asks the model for.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from agentguard.agent.observability import TraceRecord
from agentguard.core.schema import GenerationConfig


# ---------------------------------------------------------------------------
# Structured agent reply
# ---------------------------------------------------------------------------
class AssistantReply(BaseModel):
    """Shape every agent answer must have."""

    answer: str = Field(..., description="Concise answer for the user")
    used_tools: List[str] = Field(default_factory=list, description="Names of tools consulted")
    data: Optional[Dict[str, Any]] = Field(None, description="Raw data backing the answer")
    notes: Optional[List[str]] = None


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    # Left untyped so non-text input reaches the input guard and is classified there.
    message: Any = Field(..., description="User message for the agent")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")
    generation: Optional[GenerationConfig] = Field(
        None, description="Generation options overriding the endpoint defaults"
    )


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    session_id: str
    ok: bool
    value: Dict[str, Any] | None = None
    category: str | None = None
    error_kind: str | None = None
    detail: str | None = None
    trace: List[TraceRecord] = Field(default_factory=list)
