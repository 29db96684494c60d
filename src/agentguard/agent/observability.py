"""
Turn-level trace instrumentation.

The orchestrator reports through a :class:`TurnLogger` passed in by the caller instead of writing
to the console directly.  Two implementations ship:

* :class:`LoggingTurnLogger` sends every record through the standard :mod:`logging` machinery.
* :class:`MemoryTurnLogger` keeps records in a list (tests, HTTP trace echo) and can forward them.

Recording never raises into the pipeline and never changes the observed values.
"""

import json
import logging
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    List,
    Literal,
    Protocol,
)

from pydantic import (
    BaseModel,
    Field,
)
from pydantic_core import PydanticSerializationError

TRACE_LOGGER_NAME = "agentguard.trace"


class TraceRecord(BaseModel):
    """One timestamped observation."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    level: Literal["info", "error"] = "info"
    event: Literal["start", "end", "record"] = "record"
    label: str
    payload: Any = None


class TurnLogger(Protocol):
    """Sink for turn observations."""

    def start(self, label: str) -> None:
        ...

    def end(self, label: str, latency_ms: float | None = None) -> None:
        ...

    def info(self, label: str, payload: Any = None) -> None:
        ...

    def error(self, label: str, detail: Any = None) -> None:
        ...


def _render(payload: Any) -> str:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(payload)


class LoggingTurnLogger:
    """Writes trace records to a standard library logger."""

    def __init__(self, target: logging.Logger | None = None) -> None:
        self._log = target or logging.getLogger(TRACE_LOGGER_NAME)

    def _emit(self, record: TraceRecord, message: str, *args: Any) -> None:
        level = logging.ERROR if record.level == "error" else logging.INFO
        try:
            structured = record.model_dump(mode="json")
        except PydanticSerializationError:
            structured = record.model_dump(mode="json", exclude={"payload"})
            structured["payload"] = _render(record.payload)
        self._log.log(level, message, *args, extra={"trace": structured})

    def start(self, label: str) -> None:
        self._emit(TraceRecord(event="start", label=label), "=== START: %s ===", label)

    def end(self, label: str, latency_ms: float | None = None) -> None:
        record = TraceRecord(event="end", label=label, payload={"latency_ms": latency_ms})
        if latency_ms is None:
            self._emit(record, "=== END: %s ===", label)
        else:
            self._emit(record, "=== END: %s (%.1f ms) ===", label, latency_ms)

    def info(self, label: str, payload: Any = None) -> None:
        record = TraceRecord(label=label, payload=payload)
        if payload is None:
            self._emit(record, "%s", label)
        else:
            self._emit(record, "%s: %s", label, _render(payload))

    def error(self, label: str, detail: Any = None) -> None:
        record = TraceRecord(level="error", label=label, payload=detail)
        self._emit(record, "%s: %s", label, _render(detail))


class MemoryTurnLogger:
    """Collects trace records in memory, optionally forwarding them to another logger."""

    def __init__(self, forward: TurnLogger | None = None) -> None:
        self.records: List[TraceRecord] = []
        self._forward = forward

    def start(self, label: str) -> None:
        self.records.append(TraceRecord(event="start", label=label))
        if self._forward is not None:
            self._forward.start(label)

    def end(self, label: str, latency_ms: float | None = None) -> None:
        record = TraceRecord(event="end", label=label, payload={"latency_ms": latency_ms})
        self.records.append(record)
        if self._forward is not None:
            self._forward.end(label, latency_ms)

    def info(self, label: str, payload: Any = None) -> None:
        self.records.append(TraceRecord(label=label, payload=payload))
        if self._forward is not None:
            self._forward.info(label, payload)

    def error(self, label: str, detail: Any = None) -> None:
        self.records.append(TraceRecord(level="error", label=label, payload=detail))
        if self._forward is not None:
            self._forward.error(label, detail)

    def find(self, label: str) -> List[TraceRecord]:
        """Records carrying *label*, in emission order."""
        return [r for r in self.records if r.label == label]
