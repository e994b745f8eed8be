"""Schema documents describing a function's input and output shapes."""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as t

import pydantic

from .codec import strict_type
from .errors import SchemaDerivationError

logger = logging.getLogger(__name__)


@dc.dataclass(frozen=True, slots=True)
class Schema:
    """JSON schemas for one function's input and output."""

    input: dict[str, t.Any] = dc.field(default_factory=dict)
    output: dict[str, t.Any] = dc.field(default_factory=dict)

    def to_dict(self) -> dict[str, t.Any]:
        """Return a JSON-serialisable mapping of this schema document."""
        return {"input": self.input, "output": self.output}

    @classmethod
    def from_payload(cls, payload: object) -> Schema:
        """Construct a schema document from a decoded JSON *payload*."""
        if not isinstance(payload, dict):
            msg = f"schema document must be an object, got {type(payload).__name__}"
            raise TypeError(msg)
        parts: dict[str, dict[str, t.Any]] = {}
        for key in ("input", "output"):
            value = payload.get(key)
            if value is None:
                value = {}
            if not isinstance(value, dict):
                msg = f"schema {key!r} must be an object"
                raise TypeError(msg)
            parts[key] = value
        return cls(input=parts["input"], output=parts["output"])


def parse_schemas(payload: object) -> dict[str, Schema]:
    """Decode a schema listing mapping function names to schema documents."""
    if not isinstance(payload, dict):
        msg = f"schema listing must be an object, got {type(payload).__name__}"
        raise TypeError(msg)
    return {str(name): Schema.from_payload(doc) for name, doc in payload.items()}


def derive_schema(tp: t.Any) -> dict[str, t.Any]:  # noqa: ANN401 - any adaptable type
    """Return the JSON schema describing values of *tp*.

    Model types are described through their unknown-field-rejecting variant,
    so the schema advertises ``additionalProperties: false`` exactly when the
    plugin will refuse extra fields.
    """
    try:
        schema = pydantic.TypeAdapter(strict_type(tp)).json_schema()
    except (pydantic.PydanticUserError, TypeError, ValueError) as exc:
        msg = f"cannot derive schema for {tp!r}: {exc}"
        raise SchemaDerivationError(msg) from exc
    schema.pop("$schema", None)
    return schema


def schema_for_function(
    input_type: t.Any,  # noqa: ANN401
    output_type: t.Any,  # noqa: ANN401
) -> Schema:
    """Build the schema document for a function, tolerating derivation errors.

    A type whose schema cannot be derived is described by an empty schema;
    the failure is logged and the function remains callable.
    """
    parts: dict[str, dict[str, t.Any]] = {}
    for label, tp in (("input", input_type), ("output", output_type)):
        try:
            parts[label] = derive_schema(tp)
        except SchemaDerivationError as exc:
            logger.error("Error generating %s schema: %s", label, exc)  # noqa: TRY400
            parts[label] = {}
    return Schema(input=parts["input"], output=parts["output"])


__all__ = ["Schema", "derive_schema", "parse_schemas", "schema_for_function"]
