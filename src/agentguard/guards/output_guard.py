"""Output guard: parse model text and validate it against a schema contract."""

import logging
from typing import Type

from pydantic import (
    BaseModel,
    ValidationError,
)

from agentguard.core.contract import (
    SchemaContract,
    as_contract,
)
from agentguard.core.errors import (
    OutputError,
    OutputErrorKind,
)

logger = logging.getLogger(__name__)


def validate_model_output(
    schema: SchemaContract | Type[BaseModel], raw_text: str | None
) -> BaseModel:
    """
    Return the validated value for *raw_text*, or raise :class:`OutputError`.

    Unparseable text is ``MALFORMED_PAYLOAD``; parseable JSON that does not satisfy the contract is
    ``SCHEMA_MISMATCH``.  Nothing is coerced or repaired.
    """
    contract = as_contract(schema)

    if raw_text is None:
        raise OutputError(OutputErrorKind.MALFORMED_PAYLOAD, "model returned no text")

    try:
        return contract.validate_json(raw_text)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        if any(err["type"] == "json_invalid" for err in errors):
            raise OutputError(
                OutputErrorKind.MALFORMED_PAYLOAD,
                f"model output is not valid JSON: {errors[0]['msg']}",
            ) from exc
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or '<root>'}: {err['msg']}"
            for err in errors
        )
        logger.debug("Output for %s failed validation: %s", contract.name, problems)
        raise OutputError(
            OutputErrorKind.SCHEMA_MISMATCH,
            f"output does not match {contract.name}: {problems}",
        ) from exc
