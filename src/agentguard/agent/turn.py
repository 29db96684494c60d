"""
Agent turn orchestration for agentguard.

One turn moves through ``IDLE -> INPUT_VALIDATING -> INVOKING -> OUTPUT_VALIDATING -> DONE`` and
drops to ``FAILED`` from whichever state raised.  Each stage reports through the injected
:class:`~agentguard.agent.observability.TurnLogger`; the caller always gets back a
:class:`~agentguard.core.schema.TurnSuccess` or a :class:`~agentguard.core.schema.TurnFailure`.

When the model answers with function calls, the orchestrator runs the matching handlers and sends
the results back, up to ``max_tool_rounds`` times.  Nothing is retried.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import (
    Any,
    List,
    Tuple,
    Type,
)

from pydantic import BaseModel

from agentguard.agent.model_interface import (
    BaseModelAdapter,
    ModelRequest,
    invoke_model,
    load_adapter,
)
from agentguard.agent.observability import (
    LoggingTurnLogger,
    TurnLogger,
)
from agentguard.agent.tool_executor import run_function_call
from agentguard.config import settings
from agentguard.core.contract import (
    SchemaContract,
    as_contract,
)
from agentguard.core.errors import (
    AgentGuardError,
    InputError,
    ModelError,
    ModelErrorKind,
    OutputError,
)
from agentguard.core.schema import (
    GenerationConfig,
    Message,
    ModelResponse,
    Part,
    TurnFailure,
    TurnResult,
    TurnState,
    TurnSuccess,
)
from agentguard.core.session import ConversationSession
from agentguard.guards.input_guard import (
    InputPolicy,
    validate_user_input,
)
from agentguard.guards.output_guard import validate_model_output
from agentguard.tools import ToolRegistry

logger = logging.getLogger(__name__)

TURN_LABEL = "agent_turn"


class AgentTurnRunner:
    """
    Runs guarded, observable agent turns against one model adapter.

    Parameters
    ----------
    adapter:
        The model service boundary.
    trace:
        Where turn observations go.  Defaults to :class:`LoggingTurnLogger`.
    policy:
        Input guard limits.  Defaults to :meth:`InputPolicy.from_settings`.
    max_tool_rounds:
        How many times the model may ask for tools within one turn (``settings.MAX_TOOL_ROUNDS``).
    model:
        Service model id, overriding the adapter's default.
    deadline:
        Default per-turn deadline in seconds (``settings.MODEL_DEADLINE``).
    """

    def __init__(
        self,
        adapter: BaseModelAdapter,
        *,
        trace: TurnLogger | None = None,
        policy: InputPolicy | None = None,
        max_tool_rounds: int | None = None,
        model: str | None = None,
        deadline: float | None = None,
    ) -> None:
        self.adapter = adapter
        self.trace: TurnLogger = trace or LoggingTurnLogger()
        self.policy = policy or InputPolicy.from_settings()
        self.max_tool_rounds = (
            settings.MAX_TOOL_ROUNDS if max_tool_rounds is None else max_tool_rounds
        )
        if self.max_tool_rounds < 0:
            raise ValueError("max_tool_rounds must be >= 0")
        self.model = model
        self.deadline = settings.MODEL_DEADLINE if deadline is None else deadline

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(
        self,
        session: ConversationSession,
        user_message: Any,
        schema: SchemaContract | Type[BaseModel],
        *,
        tools: ToolRegistry | None = None,
        config: GenerationConfig | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> TurnResult:
        """Run one turn and return its validated value or classified failure."""
        contract = as_contract(schema)
        config = config or GenerationConfig()
        deadline = self.deadline if deadline is None else deadline

        started = time.perf_counter()
        self.trace.start(TURN_LABEL)
        try:
            return self._run(session, user_message, contract, tools, config, deadline, cancel)
        except Exception as exc:
            self.trace.error("unexpected_failure", repr(exc))
            raise
        finally:
            self.trace.end(TURN_LABEL, (time.perf_counter() - started) * 1000.0)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _transition(self, current: TurnState, target: TurnState) -> TurnState:
        self.trace.info("transition", f"{current.value} -> {target.value}")
        return target

    def _fail(
        self, state: TurnState, exc: AgentGuardError, label: str, raw_text: str | None = None
    ) -> TurnFailure:
        logger.debug("Turn failed while %s: %s", state.value, exc)
        self.trace.error(label, {"kind": exc.kind.value, "detail": exc.detail})
        self._transition(state, TurnState.FAILED)
        return TurnFailure(
            category=exc.category,
            error_kind=exc.kind,
            detail=exc.detail,
            failed_in=state,
            raw_text=raw_text,
        )

    def _run(
        self,
        session: ConversationSession,
        user_message: Any,
        contract: SchemaContract,
        tools: ToolRegistry | None,
        config: GenerationConfig,
        deadline: float | None,
        cancel: threading.Event | None,
    ) -> TurnResult:
        state = self._transition(TurnState.IDLE, TurnState.INPUT_VALIDATING)
        try:
            cleaned = validate_user_input(user_message, self.policy)
        except InputError as exc:
            return self._fail(state, exc, "input_validation_failed")
        self.trace.info("validated_user_input", cleaned)

        state = self._transition(state, TurnState.INVOKING)
        try:
            response, pending = self._invoke(
                session, cleaned, contract, tools, config, deadline, cancel
            )
        except ModelError as exc:
            return self._fail(state, exc, "model_call_failed")
        # The exchange is committed only once the model has answered.
        session.extend([*pending, response.message])

        state = self._transition(state, TurnState.OUTPUT_VALIDATING)
        raw_text = response.text
        try:
            value = validate_model_output(contract, raw_text)
        except OutputError as exc:
            return self._fail(state, exc, "output_validation_failed", raw_text)
        self.trace.info("validated_output", value.model_dump(mode="json"))

        self._transition(state, TurnState.DONE)
        return TurnSuccess(
            value=value,
            raw_text=raw_text,
            model_version=response.model_version,
            usage=response.usage,
        )

    def _invoke(
        self,
        session: ConversationSession,
        cleaned: str,
        contract: SchemaContract,
        tools: ToolRegistry | None,
        config: GenerationConfig,
        deadline: float | None,
        cancel: threading.Event | None,
    ) -> Tuple[ModelResponse, List[Message]]:
        """Call the model, running requested tools in between, until it gives a final answer."""
        pending: List[Message] = [Message.user(cleaned)]
        declarations = tools.declarations() if tools is not None else ()
        expires = None if deadline is None else time.monotonic() + deadline

        rounds = 0
        while True:
            request = ModelRequest(
                model=self.model,
                contents=(*session.history, *pending),
                tools=declarations,
                config=config,
                response_schema=contract.json_schema,
            )
            remaining = None if expires is None else expires - time.monotonic()

            t0 = time.perf_counter()
            response = invoke_model(self.adapter, request, deadline=remaining, cancel=cancel)
            self.trace.info("model_latency_ms", round((time.perf_counter() - t0) * 1000.0, 1))
            self.trace.info("raw_model_response", response.text)
            self.trace.info("model_version", response.model_version)
            if response.usage is not None:
                self.trace.info("usage_metadata", response.usage.model_dump())

            calls = response.function_calls
            if not calls:
                return response, pending
            if rounds == self.max_tool_rounds:
                raise ModelError(
                    ModelErrorKind.TOOL_ROUNDS_EXCEEDED,
                    f"model still requested tools after {self.max_tool_rounds} rounds",
                )

            pending.append(response.message)
            results: List[Part] = []
            for call in calls:
                self.trace.info("tool_call", {"name": call.name, "args": call.args})
                t0 = time.perf_counter()
                outcome = run_function_call(tools, call)
                elapsed = round((time.perf_counter() - t0) * 1000.0, 1)
                self.trace.info("tool_latency_ms", {"name": call.name, "ms": elapsed})
                if "error" in outcome.response:
                    self.trace.error("tool_failed", {"name": call.name, **outcome.response})
                else:
                    self.trace.info("tool_result", {"name": call.name, **outcome.response})
                results.append(Part(function_response=outcome))
            pending.append(Message(role="user", parts=results))
            rounds += 1


def run_agent_turn(
    session: ConversationSession,
    user_message: Any,
    schema: SchemaContract | Type[BaseModel],
    *,
    adapter: BaseModelAdapter | None = None,
    tools: ToolRegistry | None = None,
    config: GenerationConfig | None = None,
    trace: TurnLogger | None = None,
    policy: InputPolicy | None = None,
    deadline: float | None = None,
    cancel: threading.Event | None = None,
) -> TurnResult:
    """
    Run a single guarded turn.

    Convenience wrapper that builds an :class:`AgentTurnRunner` (loading the configured adapter when
    none is given) and runs it once.
    """
    runner = AgentTurnRunner(adapter or load_adapter(), trace=trace, policy=policy)
    return runner.run(
        session, user_message, schema, tools=tools, config=config, deadline=deadline, cancel=cancel
    )
