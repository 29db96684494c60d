"""Caller-owned conversation history."""

from typing import (
    Iterable,
    Iterator,
    List,
    Tuple,
)

from agentguard.core.schema import Message


class ConversationSession:
    """
    Ordered, append-only history of one conversation.

    The session belongs to the caller that created it.  The orchestrator only ever appends the
    messages of a completed model exchange; it never drops or reorders entries.  There is no
    internal locking: callers that share one session between threads must serialize their turns.
    """

    def __init__(self, history: Iterable[Message] | None = None) -> None:
        self._messages: List[Message] = []
        if history is not None:
            self.extend(history)

    @property
    def history(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def append(self, message: Message) -> None:
        if not isinstance(message, Message):
            raise TypeError(f"Expected Message, got {type(message).__name__}")
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(message)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.history)

    def __repr__(self) -> str:
        return f"ConversationSession(messages={len(self._messages)})"
