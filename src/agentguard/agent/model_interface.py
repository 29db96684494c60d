"""
Model interface for agentguard.

This module is the only place that *directly* calls an LLM service.  Everything else (guards,
tools, orchestration) stays model-agnostic and speaks :class:`ModelRequest` /
:class:`~agentguard.core.schema.ModelResponse`.

We support three back-ends out of the box:

1. **Google Gemini** via the ``google-genai`` SDK (default).
2. **OpenAI** chat completions.
3. **Anthropic** messages.

Additional services can be added by subclassing :class:`BaseModelAdapter` and registering via
:func:`register_adapter`.  Adapters forward generation options verbatim, classify every failure
into a :class:`~agentguard.core.errors.ModelError`, and never retry.
"""

import json
import logging
import re
import threading
import time
from abc import (
    ABC,
    abstractmethod,
)
from concurrent.futures import (
    ThreadPoolExecutor,
    TimeoutError as FuturesTimeoutError,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Tuple,
    Type,
)

import httpx
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from agentguard.config import settings
from agentguard.core.errors import (
    ModelError,
    ModelErrorKind,
)
from agentguard.core.schema import (
    FunctionCall,
    GenerationConfig,
    Message,
    ModelResponse,
    Part,
    ResponseFormat,
    UsageMetadata,
)
from agentguard.tools import ToolDeclaration

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05  # seconds between deadline / cancel checks

# GenerationConfig fields that map 1:1 onto google-genai's GenerateContentConfig
_GEMINI_PASSTHROUGH = (
    "temperature",
    "top_p",
    "top_k",
    "candidate_count",
    "max_output_tokens",
    "system_instruction",
)


# ---------------------------------------------------------------------------
# Request model
# ---------------------------------------------------------------------------
class ModelRequest(BaseModel):
    """Everything one ``generate`` call needs."""

    model_config = ConfigDict(frozen=True)

    model: str | None = Field(None, description="Service model id; adapter default when unset")
    contents: Tuple[Message, ...] = Field(..., min_length=1)
    tools: Tuple[ToolDeclaration, ...] = ()
    config: GenerationConfig = Field(default_factory=GenerationConfig)
    response_schema: Dict[str, Any] | None = None

    @property
    def wants_json(self) -> bool:
        return self.config.response_format is ResponseFormat.JSON


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_ADAPTER_REGISTRY: dict[str, Type["BaseModelAdapter"]] = {}


def register_adapter(name: str) -> Callable:
    """Decorator to register an adapter class under *name*."""

    def wrapper(cls: Type["BaseModelAdapter"]) -> Type["BaseModelAdapter"]:
        _ADAPTER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_adapter(name: str | None = None, **kwargs: Any) -> "BaseModelAdapter":
    """
    Factory that returns an instantiated adapter.

    Fallback order:
    1. *name* arg
    2. ``settings.MODEL_PROVIDER`` env option
    3. default: ``"gemini"``
    """

    target = name or getattr(settings, "MODEL_PROVIDER", "gemini")
    cls = _ADAPTER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Model adapter '{target}' is not registered.")
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseModelAdapter(ABC):
    """Abstract boundary to one hosted generation service."""

    name: ClassVar[str] = "base"

    def __init__(self, model: str | None = None, client: Any = None) -> None:
        self.model = model or self.default_model()
        self._client = client

    @classmethod
    @abstractmethod
    def default_model(cls) -> str:
        """Model id used when neither the request nor the constructor names one."""

    @abstractmethod
    def generate(self, request: ModelRequest) -> ModelResponse:
        """Send *request* to the service; raise :class:`ModelError` on failure."""

    def _model_for(self, request: ModelRequest) -> str:
        return request.model or self.model

    def _skip_unsupported(self, config: GenerationConfig, *fields: str) -> None:
        for field in fields:
            if getattr(config, field) is not None:
                logger.debug("%s adapter does not support '%s'; option dropped", self.name, field)


def invoke_model(
    adapter: BaseModelAdapter,
    request: ModelRequest,
    *,
    deadline: float | None = None,
    cancel: threading.Event | None = None,
) -> ModelResponse:
    """
    Call *adapter* while honouring an optional deadline and cancellation signal.

    Parameters
    ----------
    adapter, request:
        The adapter to call and what to send.
    deadline:
        Seconds to wait for the response.  *None* waits as long as the service does.
    cancel:
        Event that aborts the wait when set.

    Raises
    ------
    ModelError
        Whatever the adapter raised, or ``TIMEOUT`` when the deadline passes or *cancel* is set.
        A response that arrives after that point is discarded.
    """
    if deadline is None and cancel is None:
        return adapter.generate(request)

    if deadline is not None and deadline <= 0:
        raise ModelError(ModelErrorKind.TIMEOUT, "deadline elapsed before the model call started")

    expires = None if deadline is None else time.monotonic() + deadline
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="agentguard-model")
    try:
        future = executor.submit(adapter.generate, request)
        while True:
            if cancel is not None and cancel.is_set():
                future.cancel()
                raise ModelError(ModelErrorKind.TIMEOUT, "model call cancelled by caller")
            wait = _POLL_INTERVAL
            if expires is not None:
                remaining = expires - time.monotonic()
                if remaining <= 0:
                    future.cancel()
                    raise ModelError(
                        ModelErrorKind.TIMEOUT, f"no model response within {deadline:.2f}s"
                    )
                wait = min(wait, remaining)
            try:
                return future.result(timeout=wait)
            except FuturesTimeoutError:
                continue
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def _text_or_none(texts: List[str]) -> str | None:
    return "".join(texts) if texts else None


def _model_message(parts: List[Part]) -> Message:
    return Message(role="model", parts=parts or [Part(text="")])


# ---------------------------------------------------------------------------
# Concrete adapters
# ---------------------------------------------------------------------------
@register_adapter("gemini")
class GeminiAdapter(BaseModelAdapter):
    """Google Gemini via ``google-genai``, with automatic function calling disabled."""

    name = "gemini"

    @classmethod
    def default_model(cls) -> str:
        return settings.GEMINI_MODEL

    def _get_client(self) -> Any:
        if self._client is None:
            from google import genai  # pylint: disable=import-outside-toplevel
            from google.genai import types  # pylint: disable=import-outside-toplevel

            self._client = genai.Client(
                api_key=settings.GEMINI_API_KEY,
                http_options=types.HttpOptions(timeout=int(settings.HTTP_TIMEOUT * 1000)),
            )
        return self._client

    @staticmethod
    def _to_content(message: Message) -> Any:
        from google.genai import types  # pylint: disable=import-outside-toplevel

        parts = []
        for part in message.parts:
            if part.function_call is not None:
                call = part.function_call
                parts.append(
                    types.Part(function_call=types.FunctionCall(name=call.name, args=call.args))
                )
            elif part.function_response is not None:
                resp = part.function_response
                parts.append(
                    types.Part(
                        function_response=types.FunctionResponse(
                            name=resp.name, response=resp.response
                        )
                    )
                )
            elif part.text:
                parts.append(types.Part(text=part.text))
        return types.Content(role=message.role, parts=parts)

    def _to_contents(self, messages: Tuple[Message, ...]) -> List[Any]:
        # Gemini rejects empty text parts; a model turn that produced no text is not replayed.
        contents = [self._to_content(m) for m in messages]
        return [c for c in contents if c.parts]

    def _build_config(self, request: ModelRequest) -> Any:
        from google.genai import types  # pylint: disable=import-outside-toplevel

        cfg = request.config
        kwargs: Dict[str, Any] = {
            key: value for key, value in cfg.explicit().items() if key in _GEMINI_PASSTHROUGH
        }
        if cfg.thinking_budget is not None:
            kwargs["thinking_config"] = types.ThinkingConfig(thinking_budget=cfg.thinking_budget)
        if cfg.response_format is ResponseFormat.JSON:
            kwargs["response_mime_type"] = "application/json"
            if request.response_schema is not None:
                kwargs["response_json_schema"] = request.response_schema
        elif cfg.response_format is ResponseFormat.TEXT:
            kwargs["response_mime_type"] = "text/plain"
        if request.tools:
            declarations = [
                types.FunctionDeclaration(
                    name=decl.name,
                    description=decl.description,
                    parameters_json_schema=decl.parameters_schema(),
                )
                for decl in request.tools
            ]
            kwargs["tools"] = [types.Tool(function_declarations=declarations)]
            kwargs["automatic_function_calling"] = types.AutomaticFunctionCallingConfig(
                disable=True
            )
        return types.GenerateContentConfig(**kwargs) if kwargs else None

    @staticmethod
    def _parse(response: Any) -> ModelResponse:
        candidate_texts: List[str] = []
        first_parts: List[Part] = []
        for index, candidate in enumerate(response.candidates or []):
            content = candidate.content
            raw_parts = (content.parts if content is not None else None) or []
            texts: List[str] = []
            for raw in raw_parts:
                if raw.function_call is not None:
                    if index == 0:
                        fc = raw.function_call
                        ids = {"id": fc.id} if fc.id else {}
                        call = FunctionCall(name=fc.name, args=dict(fc.args or {}), **ids)
                        first_parts.append(Part(function_call=call))
                elif raw.text is not None and not raw.thought:
                    texts.append(raw.text)
                    if index == 0:
                        first_parts.append(Part(text=raw.text))
            candidate_texts.append("".join(texts))

        usage = None
        if response.usage_metadata is not None:
            meta = response.usage_metadata
            usage = UsageMetadata(
                prompt_tokens=meta.prompt_token_count,
                output_tokens=meta.candidates_token_count,
                total_tokens=meta.total_token_count,
            )
        return ModelResponse(
            message=_model_message(first_parts),
            candidates=candidate_texts,
            model_version=response.model_version,
            usage=usage,
        )

    def generate(self, request: ModelRequest) -> ModelResponse:
        from google.genai import errors  # pylint: disable=import-outside-toplevel

        client = self._get_client()
        try:
            response = client.models.generate_content(
                model=self._model_for(request),
                contents=self._to_contents(request.contents),
                config=self._build_config(request),
            )
        except errors.APIError as exc:
            raise ModelError(
                ModelErrorKind.SERVICE_REJECTED,
                f"Gemini rejected the request ({exc.code}): {exc.message}",
                status=exc.code,
            ) from exc
        except httpx.TimeoutException as exc:
            raise ModelError(ModelErrorKind.TIMEOUT, f"Gemini request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ModelError(ModelErrorKind.UNREACHABLE, f"Gemini unreachable: {exc}") from exc

        logger.debug("Gemini response: %s", response)
        return self._parse(response)


@register_adapter("openai")
class OpenAIAdapter(BaseModelAdapter):
    """OpenAI chat completions with function tools and JSON-schema response format."""

    name = "openai"

    @classmethod
    def default_model(cls) -> str:
        return settings.OPENAI_MODEL

    def _get_client(self) -> Any:
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.OpenAI(
                api_key=settings.OPENAI_API_KEY, timeout=settings.HTTP_TIMEOUT, max_retries=0
            )
        return self._client

    @staticmethod
    def _to_messages(request: ModelRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if request.config.system_instruction:
            messages.append({"role": "system", "content": request.config.system_instruction})
        for message in request.contents:
            if message.role == "model":
                entry: Dict[str, Any] = {"role": "assistant", "content": message.text}
                if message.function_calls:
                    entry["tool_calls"] = [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.args)},
                        }
                        for call in message.function_calls
                    ]
                messages.append(entry)
                continue
            for part in message.parts:
                if part.function_response is not None:
                    messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": part.function_response.id,
                            "content": json.dumps(part.function_response.response, default=str),
                        }
                    )
            if message.text is not None:
                messages.append({"role": "user", "content": message.text})
        return messages

    def _build_kwargs(self, request: ModelRequest) -> Dict[str, Any]:
        cfg = request.config
        kwargs: Dict[str, Any] = {}
        if cfg.temperature is not None:
            kwargs["temperature"] = cfg.temperature
        if cfg.top_p is not None:
            kwargs["top_p"] = cfg.top_p
        if cfg.candidate_count is not None:
            kwargs["n"] = cfg.candidate_count
        if cfg.max_output_tokens is not None:
            kwargs["max_completion_tokens"] = cfg.max_output_tokens
        self._skip_unsupported(cfg, "top_k", "thinking_budget")

        if cfg.response_format is ResponseFormat.JSON:
            if request.response_schema is not None:
                title = str(request.response_schema.get("title") or "response")
                kwargs["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {
                        "name": re.sub(r"[^A-Za-z0-9_-]", "_", title),
                        "schema": request.response_schema,
                    },
                }
            else:
                kwargs["response_format"] = {"type": "json_object"}
        elif cfg.response_format is ResponseFormat.TEXT:
            kwargs["response_format"] = {"type": "text"}

        if request.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": decl.name,
                        "description": decl.description,
                        "parameters": decl.parameters_schema(),
                    },
                }
                for decl in request.tools
            ]
        return kwargs

    @staticmethod
    def _parse(resp: Any) -> ModelResponse:
        first_parts: List[Part] = []
        candidate_texts: List[str] = []
        for index, choice in enumerate(resp.choices or []):
            content = choice.message.content
            candidate_texts.append(content or "")
            if index != 0:
                continue
            if content is not None:
                first_parts.append(Part(text=content))
            for call in choice.message.tool_calls or []:
                try:
                    args = json.loads(call.function.arguments or "{}")
                except json.JSONDecodeError:
                    logger.warning(
                        "OpenAI returned malformed arguments for '%s'", call.function.name
                    )
                    args = {}
                first_parts.append(
                    Part(function_call=FunctionCall(id=call.id, name=call.function.name, args=args))
                )

        usage = None
        if resp.usage is not None:
            usage = UsageMetadata(
                prompt_tokens=resp.usage.prompt_tokens,
                output_tokens=resp.usage.completion_tokens,
                total_tokens=resp.usage.total_tokens,
            )
        return ModelResponse(
            message=_model_message(first_parts),
            candidates=candidate_texts,
            model_version=resp.model,
            usage=usage,
        )

    def generate(self, request: ModelRequest) -> ModelResponse:
        import openai  # pylint: disable=import-outside-toplevel

        client = self._get_client()
        try:
            resp = client.chat.completions.create(
                model=self._model_for(request),
                messages=self._to_messages(request),
                **self._build_kwargs(request),
            )
        except openai.APITimeoutError as exc:
            raise ModelError(ModelErrorKind.TIMEOUT, f"OpenAI request timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise ModelError(ModelErrorKind.UNREACHABLE, f"OpenAI unreachable: {exc}") from exc
        except openai.APIStatusError as exc:
            raise ModelError(
                ModelErrorKind.SERVICE_REJECTED,
                f"OpenAI rejected the request ({exc.status_code}): {exc.message}",
                status=exc.status_code,
            ) from exc

        logger.debug("OpenAI response: %s", resp)
        return self._parse(resp)


@register_adapter("anthropic")
class AnthropicAdapter(BaseModelAdapter):
    """Anthropic Claude messages with tool use."""

    name = "anthropic"

    @classmethod
    def default_model(cls) -> str:
        return settings.ANTHROPIC_MODEL

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.Anthropic(
                api_key=settings.ANTHROPIC_API_KEY,
                timeout=settings.HTTP_TIMEOUT,
                max_retries=0,
            )
        return self._client

    @staticmethod
    def _system_prompt(request: ModelRequest) -> str | None:
        sections = []
        if request.config.system_instruction:
            sections.append(request.config.system_instruction)
        # The messages API has no response format option, so the schema travels in the prompt.
        if request.wants_json:
            if request.response_schema is not None:
                schema = json.dumps(request.response_schema, ensure_ascii=False)
                sections.append(
                    f"Respond only with a JSON object matching this JSON schema:\n{schema}"
                )
            else:
                sections.append("Respond only with a JSON object.")
        return "\n\n".join(sections) if sections else None

    @staticmethod
    def _to_messages(request: ModelRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        for message in request.contents:
            blocks: List[Dict[str, Any]] = []
            for part in message.parts:
                if part.function_call is not None:
                    call = part.function_call
                    blocks.append(
                        {"type": "tool_use", "id": call.id, "name": call.name, "input": call.args}
                    )
                elif part.function_response is not None:
                    resp = part.function_response
                    blocks.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": resp.id,
                            "content": json.dumps(resp.response, default=str),
                            "is_error": "error" in resp.response,
                        }
                    )
                elif part.text:
                    blocks.append({"type": "text", "text": part.text})
            if not blocks:
                continue
            role = "assistant" if message.role == "model" else "user"
            messages.append({"role": role, "content": blocks})
        return messages

    def _build_kwargs(self, request: ModelRequest) -> Dict[str, Any]:
        cfg = request.config
        kwargs: Dict[str, Any] = {
            "max_tokens": cfg.max_output_tokens or settings.ANTHROPIC_MAX_TOKENS,
        }
        if cfg.temperature is not None:
            kwargs["temperature"] = cfg.temperature
        if cfg.top_p is not None:
            kwargs["top_p"] = cfg.top_p
        if cfg.top_k is not None:
            kwargs["top_k"] = cfg.top_k
        if cfg.thinking_budget and request.tools:
            # Thinking blocks are not kept in the history, so tool rounds cannot replay them.
            logger.debug("anthropic adapter drops thinking_budget when tools are declared")
        elif cfg.thinking_budget:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": cfg.thinking_budget}
        self._skip_unsupported(cfg, "candidate_count")

        system = self._system_prompt(request)
        if system is not None:
            kwargs["system"] = system
        if request.tools:
            kwargs["tools"] = [
                {
                    "name": decl.name,
                    "description": decl.description,
                    "input_schema": decl.parameters_schema(),
                }
                for decl in request.tools
            ]
        return kwargs

    @staticmethod
    def _parse(response: Any) -> ModelResponse:
        parts: List[Part] = []
        texts: List[str] = []
        for block in response.content or []:
            if block.type == "text":
                texts.append(block.text)
                parts.append(Part(text=block.text))
            elif block.type == "tool_use":
                parts.append(
                    Part(
                        function_call=FunctionCall(
                            id=block.id, name=block.name, args=dict(block.input or {})
                        )
                    )
                )

        usage = None
        if response.usage is not None:
            prompt_tokens = response.usage.input_tokens
            output_tokens = response.usage.output_tokens
            usage = UsageMetadata(
                prompt_tokens=prompt_tokens,
                output_tokens=output_tokens,
                total_tokens=(prompt_tokens or 0) + (output_tokens or 0),
            )
        joined = _text_or_none(texts)
        return ModelResponse(
            message=_model_message(parts),
            candidates=[joined or ""],
            model_version=response.model,
            usage=usage,
        )

    def generate(self, request: ModelRequest) -> ModelResponse:
        import anthropic  # pylint: disable=import-outside-toplevel

        client = self._get_client()
        try:
            response = client.messages.create(
                model=self._model_for(request),
                messages=self._to_messages(request),
                **self._build_kwargs(request),
            )
        except anthropic.APITimeoutError as exc:
            raise ModelError(ModelErrorKind.TIMEOUT, f"Anthropic request timed out: {exc}") from exc
        except anthropic.APIConnectionError as exc:
            raise ModelError(ModelErrorKind.UNREACHABLE, f"Anthropic unreachable: {exc}") from exc
        except anthropic.APIStatusError as exc:
            raise ModelError(
                ModelErrorKind.SERVICE_REJECTED,
                f"Anthropic rejected the request ({exc.status_code}): {exc.message}",
                status=exc.status_code,
            ) from exc

        logger.debug("Anthropic response: %s", response)
        return self._parse(response)
