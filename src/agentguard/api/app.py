"""
HTTP API for agentguard.

This module exposes the guarded agent turn to remote callers.
It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all active sessions.
- **POST /agent**   - one guarded turn: {"message": "...", "session_id": "...", "generation": {...}}
"""

import logging
import threading
import uuid
from functools import lru_cache
from typing import (
    Dict,
    List,
    Optional,
)

from fastapi import (
    Depends,
    FastAPI,
)
from fastapi.responses import JSONResponse

from agentguard.agent.model_interface import (
    BaseModelAdapter,
    load_adapter,
)
from agentguard.agent.observability import (
    LoggingTurnLogger,
    MemoryTurnLogger,
)
from agentguard.agent.turn import AgentTurnRunner
from agentguard.api.models import (
    AssistantReply,
    MessageRequest,
    MessageResponse,
    SessionResponse,
)
from agentguard.config import settings
from agentguard.core.errors import ModelErrorKind
from agentguard.core.schema import (
    GenerationConfig,
    ResponseFormat,
    TurnFailure,
)
from agentguard.core.session import ConversationSession
from agentguard.tools import ToolRegistry
from agentguard.tools.builtin import default_registry

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """\
You are a precise developer assistant.
Rules:
- Never guess or invent facts.
- Prefer tool calls for factual data.
- Always return valid JSON matching the schema.
- Keep the answer concise.
- Place raw data inside the 'data' field.
"""

DEFAULT_GENERATION = GenerationConfig(
    system_instruction=SYSTEM_INSTRUCTION,
    temperature=0.2,
    thinking_budget=0,
    response_format=ResponseFormat.JSON,
)

# Conversation sessions live in process memory
sessions: Dict[str, ConversationSession] = {}
# Turns on one session must not interleave; the core leaves that to its caller.
_session_locks: Dict[str, threading.Lock] = {}
_sessions_guard = threading.Lock()

_SECRET_SETTINGS = {"GEMINI_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"}

app = FastAPI(
    title="agentguard API", version="0.1.0", description="Guarded, observable LLM agent turns"
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_adapter() -> BaseModelAdapter:
    """Model adapter configured by ``settings.MODEL_PROVIDER``."""
    return load_adapter()


def get_tools() -> ToolRegistry:
    return default_registry()


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_or_create_session(session_id: Optional[str] = None) -> str:
    """Return *session_id* if it is known, otherwise open a new session and return its ID."""
    with _sessions_guard:
        if session_id and session_id in sessions:
            return session_id

        new_session_id = str(uuid.uuid4())
        sessions[new_session_id] = ConversationSession()
        _session_locks[new_session_id] = threading.Lock()
        return new_session_id


def _status_for(failure: TurnFailure) -> int:
    if failure.category == "input":
        return 400
    if failure.error_kind is ModelErrorKind.TIMEOUT:
        return 504
    return 502


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Liveness probe; does not contact the model service."""
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session() -> SessionResponse:
    """Open an empty conversation session for later /agent calls."""
    session_id = get_or_create_session()
    return SessionResponse(session_id=session_id)


@app.get("/sessions", response_model=List[str], summary="List active sessions")
async def list_sessions() -> List[str]:
    """IDs of the sessions held by this process."""
    return list(sessions.keys())


@app.post(
    "/agent",
    response_model=MessageResponse,
    summary="Run one guarded agent turn",
    responses={code: {"model": MessageResponse} for code in (400, 502, 504)},
)
def agent_endpoint(
    req: MessageRequest,
    adapter: BaseModelAdapter = Depends(get_adapter),
    tools: ToolRegistry = Depends(get_tools),
):
    """Validate the message, call the model with the example tools, and validate the reply."""
    session_id = get_or_create_session(req.session_id)

    config = DEFAULT_GENERATION
    if req.generation is not None:
        config = DEFAULT_GENERATION.model_copy(update=req.generation.explicit())

    trace = MemoryTurnLogger(forward=LoggingTurnLogger())
    runner = AgentTurnRunner(adapter, trace=trace)
    with _session_locks[session_id]:
        result = runner.run(
            sessions[session_id], req.message, AssistantReply, tools=tools, config=config
        )

    if result.ok:
        return MessageResponse(
            session_id=session_id,
            ok=True,
            value=result.value.model_dump(mode="json"),
            trace=trace.records,
        )

    logger.warning(
        "Turn failed (%s.%s): %s", result.category, result.error_kind.value, result.detail
    )
    body = MessageResponse(
        session_id=session_id,
        ok=False,
        category=result.category,
        error_kind=result.error_kind.value,
        detail=result.detail,
        trace=trace.records,
    )
    return JSONResponse(status_code=_status_for(result), content=body.model_dump(mode="json"))


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Point callers at the generated docs."""
    return {"message": "Welcome to the agentguard API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Address and port uvicorn binds to.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        uvicorn log level; ``settings.LOG_LEVEL`` when omitted.
    """

    # Lazy import: uvicorn is only needed when serving
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting agentguard API at %s:%d (reload=%s, log_level=%s, provider=%s)",
        host,
        port,
        reload,
        log_level,
        settings.MODEL_PROVIDER,
    )
    logger.debug("API settings: %s", settings.model_dump(exclude=_SECRET_SETTINGS))

    uvicorn.run(
        "agentguard.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m agentguard.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
