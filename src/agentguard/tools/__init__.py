"""
Tool declarations and registries for agentguard.

A tool is a named capability the model may ask to run.  Each :class:`ToolDeclaration` pairs the
metadata shown to the model (name, description, parameter schema) with the local handler that
runs it.  A :class:`ToolRegistry` is an ordered, immutable set of declarations handed to one turn.

The :func:`tool` decorator builds a declaration straight from a function:
    @tool(description="Add two numbers.")
    def add(a: float, b: float) -> float:
        return a + b
"""

import inspect
import logging
import types
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Literal,
    Tuple,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

logger = logging.getLogger(__name__)

ParameterType = Literal["string", "integer", "number", "boolean", "array", "object"]

_JSON_TYPES: Dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    dict: "object",
}


class ToolParameter(BaseModel):
    """A single named argument of a tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: ParameterType = "string"
    description: str = ""
    required: bool = True
    enum: Tuple[Any, ...] | None = None

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


class ToolDeclaration(BaseModel):
    """A tool the model may request, bound to the handler that runs it."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_\-]*$")
    description: str
    parameters: Tuple[ToolParameter, ...] = ()
    handler: Callable[..., Any]

    @model_validator(mode="after")
    def _check_handler_shape(self) -> "ToolDeclaration":
        names = [p.name for p in self.parameters]
        if len(set(names)) != len(names):
            raise ValueError(f"Tool '{self.name}' declares a parameter twice.")

        sig = inspect.signature(self.handler)
        accepts_any = any(p.kind is p.VAR_KEYWORD for p in sig.parameters.values())
        for param_name in names:
            if param_name not in sig.parameters and not accepts_any:
                raise ValueError(
                    f"Tool '{self.name}' handler does not take declared parameter '{param_name}'."
                )
        for param in sig.parameters.values():
            if param.kind in (param.VAR_KEYWORD, param.VAR_POSITIONAL):
                continue
            if param.default is param.empty and param.name not in names:
                raise ValueError(
                    f"Tool '{self.name}' handler requires undeclared parameter '{param.name}'."
                )
        return self

    def parameters_schema(self) -> Dict[str, Any]:
        """JSON schema of the argument object, as model services expect it."""
        return {
            "type": "object",
            "properties": {p.name: p.json_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }

    def __call__(self, **kwargs: Any) -> Any:
        return self.handler(**kwargs)


class ToolRegistry:
    """Ordered collection of tool declarations with unique names."""

    def __init__(self, declarations: Iterable[ToolDeclaration] = ()) -> None:
        tools: Dict[str, ToolDeclaration] = {}
        for decl in declarations:
            if not isinstance(decl, ToolDeclaration):
                raise TypeError(f"Expected ToolDeclaration, got {type(decl).__name__}")
            if decl.name in tools:
                raise ValueError(f"Tool '{decl.name}' is already registered.")
            tools[decl.name] = decl
        self._tools = tools
        logger.debug("Built tool registry with %d tools: %s", len(tools), list(tools))

    def get(self, name: str) -> ToolDeclaration | None:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def declarations(self) -> Tuple[ToolDeclaration, ...]:
        return tuple(self._tools.values())

    def with_tools(self, *declarations: ToolDeclaration) -> "ToolRegistry":
        """Return a new registry with *declarations* appended."""
        return ToolRegistry((*self._tools.values(), *declarations))

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDeclaration]:
        return iter(self.declarations())

    def __len__(self) -> int:
        return len(self._tools)

    def __repr__(self) -> str:
        return f"ToolRegistry({self.names()})"


# ---------------------------------------------------------------------------
# Declaration helpers
# ---------------------------------------------------------------------------
def _describe_type(annotation: Any) -> Tuple[str, Tuple[Any, ...] | None]:
    """Map a type hint onto a JSON schema type (and enum values for ``Literal``)."""
    origin = get_origin(annotation)
    if origin is Literal:
        values = get_args(annotation)
        return _JSON_TYPES.get(type(values[0]), "string"), values
    if origin in (Union, types.UnionType):
        members = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(members) == 1:
            return _describe_type(members[0])
        return "string", None
    if origin is not None:
        return _JSON_TYPES.get(origin, "string"), None
    return _JSON_TYPES.get(annotation, "string"), None


def infer_parameters(func: Callable[..., Any]) -> Tuple[ToolParameter, ...]:
    """Extract parameter information from a function signature and its type hints."""
    sig = inspect.signature(func)
    type_hints = get_type_hints(func)
    params: List[ToolParameter] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (param.VAR_KEYWORD, param.VAR_POSITIONAL):
            continue
        json_type, enum = _describe_type(type_hints.get(param_name, str))
        params.append(
            ToolParameter(
                name=param_name,
                type=json_type,
                required=param.default is param.empty,
                enum=enum,
            )
        )
    return tuple(params)


def tool(
    name: str | None = None,
    *,
    description: str | None = None,
    parameters: Iterable[ToolParameter] | None = None,
) -> Callable[[Callable[..., Any]], ToolDeclaration]:
    """
    Turn a function into a :class:`ToolDeclaration`.

    Parameters
    ----------
    name:
        Tool name shown to the model; defaults to the function name.
    description:
        Human-readable description; defaults to the function docstring.
    parameters:
        Explicit parameter declarations.  When omitted they are inferred from the signature.

    Returns
    -------
    Callable
        A decorator returning the declaration.  The declaration is itself callable and forwards
        keyword arguments to the handler.
    """

    def wrapper(fn: Callable[..., Any]) -> ToolDeclaration:
        return ToolDeclaration(
            name=name or fn.__name__,
            description=description or inspect.getdoc(fn) or "",
            parameters=tuple(parameters) if parameters is not None else infer_parameters(fn),
            handler=fn,
        )

    return wrapper
