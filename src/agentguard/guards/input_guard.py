"""
Input guard for user messages.

Runs before any model call, so input that fails here never costs a network round trip.  The checks
are deliberately simple: type, emptiness, length, and a case-insensitive substring denylist.
"""

import logging
from typing import (
    Iterable,
    Tuple,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from agentguard.config import (
    Settings,
    settings,
)
from agentguard.core.errors import (
    InputError,
    InputErrorKind,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 800
DEFAULT_DENYLIST: Tuple[str, ...] = ("ignore previous", "sudo", "rm -rf", "<script>")


class InputPolicy(BaseModel):
    """Limits applied to every user message."""

    model_config = ConfigDict(frozen=True)

    max_length: int = Field(DEFAULT_MAX_LENGTH, gt=0)
    denylist: Tuple[str, ...] = DEFAULT_DENYLIST

    @field_validator("denylist")
    @classmethod
    def _normalize(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        terms = (term.strip().lower() for term in value)
        return tuple(dict.fromkeys(term for term in terms if term))

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "InputPolicy":
        config = config or settings
        return cls(max_length=config.MAX_INPUT_LENGTH, denylist=tuple(config.INPUT_DENYLIST))

    def extended(self, terms: Iterable[str]) -> "InputPolicy":
        """Return a copy with *terms* added to the denylist."""
        return InputPolicy(max_length=self.max_length, denylist=(*self.denylist, *terms))


def validate_user_input(raw: object, policy: InputPolicy | None = None) -> str:
    """
    Validate and trim a user message.

    Parameters
    ----------
    raw:
        The caller-supplied message.
    policy:
        Length and denylist limits; defaults to :meth:`InputPolicy.from_settings`.

    Returns
    -------
    str
        The message with surrounding whitespace removed.

    Raises
    ------
    InputError
        ``NOT_TEXT``, ``EMPTY``, ``TOO_LONG`` or ``UNSAFE``, checked in that order.
    """
    policy = policy or InputPolicy.from_settings()

    if not isinstance(raw, str):
        raise InputError(
            InputErrorKind.NOT_TEXT, f"message must be text, got {type(raw).__name__}"
        )

    cleaned = raw.strip()
    if not cleaned:
        raise InputError(InputErrorKind.EMPTY, "empty message not allowed")

    if len(raw) > policy.max_length:
        raise InputError(
            InputErrorKind.TOO_LONG,
            f"message has {len(raw)} characters, limit is {policy.max_length}",
        )

    lowered = cleaned.lower()
    for term in policy.denylist:
        if term in lowered:
            logger.debug("Denylisted term %r found in user input", term)
            raise InputError(InputErrorKind.UNSAFE, "unsafe or restricted content detected")

    return cleaned
