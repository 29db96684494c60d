"""Dispatches model-requested tool calls against a ``ToolRegistry`` and wraps errors."""

import logging
from typing import (
    Any,
    Dict,
)

from agentguard.core.errors import ToolExecutionError
from agentguard.core.schema import (
    FunctionCall,
    FunctionResponse,
)
from agentguard.tools import ToolRegistry

logger = logging.getLogger(__name__)


def execute_tool(
    registry: ToolRegistry | None, name: str, args: Dict[str, Any] | None = None
) -> Any:
    """
    Look up *name* in *registry* and invoke it with *args*.

    Parameters
    ----------
    registry:
        The tools available to the current turn.  *None* means no tools.
    name:
        The registered tool name.
    args:
        Keyword arguments to pass verbatim to the tool handler.  If *None*,
        an empty dict is assumed.

    Returns
    -------
    Any
        Whatever the tool handler returns.

    Raises
    ------
    ToolExecutionError
        If the tool is missing, required arguments are absent, or its invocation raises.
    """

    if args is None:
        args = {}

    decl = registry.get(name) if registry is not None else None
    if decl is None:
        raise ToolExecutionError(f"Tool '{name}' is not registered.")

    missing = [p.name for p in decl.parameters if p.required and p.name not in args]
    if missing:
        raise ToolExecutionError(f"Invalid arguments for tool '{name}': missing {missing}")

    try:
        logger.debug("Executing tool '%s' with args=%s", name, args)
        return decl.handler(**args)
    except ToolExecutionError:
        raise
    except TypeError as exc:
        # Argument mismatch: unknown keyword or wrong arity.
        logger.exception("Argument error while executing tool '%s'", name)
        raise ToolExecutionError(f"Invalid arguments for tool '{name}': {exc}") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc


def run_function_call(registry: ToolRegistry | None, call: FunctionCall) -> FunctionResponse:
    """
    Execute *call* and package the outcome for the model.

    Tool failures are not terminal for the turn: the error text is returned to the model as the
    function response so the service can decide how to proceed.
    """
    try:
        result = execute_tool(registry, call.name, call.args)
    except ToolExecutionError as exc:
        return FunctionResponse(id=call.id, name=call.name, response={"error": str(exc)})
    return FunctionResponse(id=call.id, name=call.name, response={"result": result})
