"""
Schema contracts for structured model output.

A :class:`SchemaContract` wraps a pydantic model class.  The same contract is used twice per turn:
its JSON schema is sent to the model service so generation can be constrained, and the model class
validates whatever text comes back.
"""

import copy
from typing import (
    Any,
    Dict,
    Type,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    create_model,
)


class SchemaContract:
    """Structural description of the object a turn must produce."""

    def __init__(self, model: Type[BaseModel], *, name: str | None = None) -> None:
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            raise TypeError(f"Schema contract needs a pydantic model class, got {model!r}")
        self.model = model
        self.name = name or model.__name__
        # Rendering the schema up front surfaces unsupported field types at construction time.
        self._json_schema: Dict[str, Any] = model.model_json_schema()

    @classmethod
    def from_fields(
        cls, name: str, *, forbid_extra: bool = False, **fields: Any
    ) -> "SchemaContract":
        """
        Build a contract from field definitions.

        Parameters
        ----------
        name:
            Name of the generated model, also used as the schema title.
        forbid_extra:
            Reject payloads carrying fields the contract does not declare.
        fields:
            ``field_name=(type, default)`` pairs as accepted by :func:`pydantic.create_model`;
            use ``...`` as the default for required fields.
        """
        config = ConfigDict(extra="forbid" if forbid_extra else "ignore")
        model = create_model(name, __config__=config, **fields)
        return cls(model, name=name)

    @property
    def json_schema(self) -> Dict[str, Any]:
        return copy.deepcopy(self._json_schema)

    def validate_json(self, raw_text: str) -> BaseModel:
        """Parse and validate *raw_text* without coercing mismatched types."""
        return self.model.model_validate_json(raw_text, strict=True)

    def __repr__(self) -> str:
        return f"SchemaContract({self.name})"


def as_contract(schema: "SchemaContract | Type[BaseModel]") -> SchemaContract:
    """Accept either a contract or a bare pydantic model class."""
    if isinstance(schema, SchemaContract):
        return schema
    return SchemaContract(schema)
