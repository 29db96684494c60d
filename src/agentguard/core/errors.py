"""
Error taxonomy for the agent turn pipeline.

Every stage raises one of the exceptions below with a ``kind`` drawn from a closed enum.  The
orchestrator translates them into a :class:`~agentguard.core.schema.TurnFailure` so callers always
see which category and which specific failure ended the turn.
"""

from enum import Enum
from typing import Any


class InputErrorKind(str, Enum):
    """Reasons the input guard rejects a user message."""

    NOT_TEXT = "not_text"
    EMPTY = "empty"
    TOO_LONG = "too_long"
    UNSAFE = "unsafe"


class ModelErrorKind(str, Enum):
    """Reasons a model invocation ends the turn."""

    UNREACHABLE = "unreachable"
    SERVICE_REJECTED = "service_rejected"
    TIMEOUT = "timeout"
    TOOL_ROUNDS_EXCEEDED = "tool_rounds_exceeded"


class OutputErrorKind(str, Enum):
    """Reasons the output guard rejects a model response."""

    MALFORMED_PAYLOAD = "malformed_payload"
    SCHEMA_MISMATCH = "schema_mismatch"


class AgentGuardError(Exception):
    """Base class for classified pipeline failures."""

    category: str = "agentguard"

    def __init__(self, kind: Enum, detail: str, **extra: Any) -> None:
        self.kind = kind
        self.detail = detail
        self.extra = extra
        super().__init__(f"{self.category}.{kind.value}: {detail}")


class InputError(AgentGuardError):
    """Raised by the input guard."""

    category = "input"


class ModelError(AgentGuardError):
    """Raised by a model adapter or by the invocation deadline."""

    category = "model"


class OutputError(AgentGuardError):
    """Raised by the output guard."""

    category = "output"


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""
