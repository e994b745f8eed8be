"""JSON schema validation of raw request payloads."""

from __future__ import annotations

import dataclasses as dc
import json
import typing as t

import jsonschema
import pydantic
from jsonschema import Draft202012Validator

from .errors import SchemaDerivationError
from .schema import derive_schema

_T = t.TypeVar("_T")


@dc.dataclass(frozen=True, slots=True)
class EvaluationResult:
    """Outcome of validating one payload.

    ``errors`` maps a field path such as ``$.items[0].name`` to a
    human-readable message. Messages reported for the same path are joined
    with ``"; "``.
    """

    errors: dict[str, str] = dc.field(default_factory=dict)

    @property
    def valid(self) -> bool:
        """Return ``True`` when the payload satisfied the schema."""
        return not self.errors

    def describe(self) -> str:
        """Return every error as a single ``path: message`` list."""
        return ", ".join(f"{path}: {message}" for path, message in self.errors.items())


def _path_to_str(path: t.Iterable[t.Any]) -> str:
    parts = ["$"]
    for part in path:
        if isinstance(part, int):
            parts.append(f"[{part}]")
        else:
            parts.append(f".{part}")
    return "".join(parts)


class Validator(t.Generic[_T]):
    """Reusable checker compiled from the schema of an input type.

    Construct it from the input type itself or from a sample instance::

        validator = Validator(HelloInput)

    Validation is read-only, so one validator may serve concurrent requests.
    """

    def __init__(self, sample: type[_T] | _T) -> None:
        tp = type(sample) if isinstance(sample, pydantic.BaseModel) else sample
        self.schema = derive_schema(tp)
        try:
            Draft202012Validator.check_schema(self.schema)
        except jsonschema.SchemaError as exc:
            msg = f"failed to compile schema: {exc.message}"
            raise SchemaDerivationError(msg) from exc
        self._validator = Draft202012Validator(
            self.schema, format_checker=Draft202012Validator.FORMAT_CHECKER
        )

    def validate(self, raw: bytes | str) -> EvaluationResult:
        """Evaluate the JSON document *raw* against the compiled schema."""
        try:
            instance = json.loads(raw)
        except ValueError as exc:
            return EvaluationResult({"$": f"invalid JSON: {exc}"})

        collected: dict[str, list[str]] = {}
        errors = sorted(
            self._validator.iter_errors(instance),
            key=lambda err: (_path_to_str(err.absolute_path), err.message),
        )
        for error in errors:
            path = _path_to_str(error.absolute_path)
            collected.setdefault(path, []).append(error.message)
        return EvaluationResult(
            {path: "; ".join(messages) for path, messages in collected.items()}
        )


__all__ = ["EvaluationResult", "Validator"]
