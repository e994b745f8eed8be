"""JSON encoding and decoding of typed function payloads.

Payload types are anything :class:`pydantic.TypeAdapter` understands. On the
plugin side, request bodies are first checked against a strict variant of the
input type in which every model, at any nesting depth, forbids unknown
fields, so a payload carrying a field the plugin does not know about is
rejected instead of being silently dropped.
"""

from __future__ import annotations

import copy
import threading
import types
import typing as t

import pydantic

_In = t.TypeVar("_In")
_Out = t.TypeVar("_Out")
_In_contra = t.TypeVar("_In_contra", contravariant=True)
_Out_co = t.TypeVar("_Out_co", covariant=True)

_strict_lock = threading.RLock()
_strict_models: dict[type[pydantic.BaseModel], type[pydantic.BaseModel]] = {}


class Codec(t.Protocol[_In_contra, _Out_co]):
    """Host-side capability pair used by :class:`~procplug.function.Function`."""

    def encode_input(self, value: _In_contra) -> bytes:
        """Serialise *value* into a request body."""
        ...

    def decode_output(self, raw: bytes) -> _Out_co:
        """Deserialise a response body."""
        ...


def _is_model(tp: object) -> bool:
    try:
        return isinstance(tp, type) and issubclass(tp, pydantic.BaseModel)
    except TypeError:  # parametrised generics on older interpreters
        return False


def strict_type(tp: t.Any) -> t.Any:  # noqa: ANN401 - accepts any adaptable type
    """Return a variant of *tp* that rejects unknown fields when decoding.

    Models are replaced by cached subclasses configured with
    ``extra="forbid"`` whose fields are made strict in turn, and containers
    such as ``list[Model]`` or ``Model | None`` are rebuilt around the strict
    models. Types without any model inside, and models that already forbid
    extra fields throughout, are returned unchanged.
    """
    if _is_model(tp):
        return _strict_model(tp)
    args = t.get_args(tp)
    origin = t.get_origin(tp)
    if origin is None or not args:
        return tp
    strict_args = tuple(strict_type(arg) for arg in args)
    if all(new is old for new, old in zip(strict_args, args)):
        return tp
    if origin is t.Annotated:
        return t.Annotated[strict_args]  # type: ignore[valid-type]
    if origin in (t.Union, types.UnionType):
        return t.Union[strict_args]  # noqa: UP007
    try:
        return origin[strict_args]
    except TypeError:
        return tp


def _strict_model(tp: type[pydantic.BaseModel]) -> type[pydantic.BaseModel]:
    with _strict_lock:
        cached = _strict_models.get(tp)
        if cached is not None:
            return cached
        # Self-referencing models keep their declared type below the top level.
        _strict_models[tp] = tp
        try:
            strict = _build_strict_model(tp)
        except BaseException:
            del _strict_models[tp]
            raise
        _strict_models[tp] = strict
        return strict


def _build_strict_model(tp: type[pydantic.BaseModel]) -> type[pydantic.BaseModel]:
    overrides: dict[str, t.Any] = {}
    for name, field in tp.model_fields.items():
        annotation = strict_type(field.annotation)
        if annotation is not field.annotation:
            overrides[name] = (annotation, copy.copy(field))
    strict = tp
    if tp.model_config.get("extra") != "forbid":
        namespace = {
            "__module__": tp.__module__,
            "__qualname__": tp.__qualname__,
            "__doc__": tp.__doc__,
            "model_config": pydantic.ConfigDict(extra="forbid"),
        }
        strict = type(tp.__name__, (tp,), namespace)
    if overrides:
        strict = pydantic.create_model(
            tp.__name__,
            __base__=strict,
            __module__=tp.__module__,
            __doc__=tp.__doc__,
            **overrides,
        )
    return strict


class ModelCodec(t.Generic[_In, _Out]):
    """Encode and decode payloads of fixed input and output types."""

    def __init__(self, input_type: t.Any, output_type: t.Any) -> None:  # noqa: ANN401
        self.input_type = input_type
        self.output_type = output_type
        self._input = pydantic.TypeAdapter(input_type)
        self._strict_input = pydantic.TypeAdapter(strict_type(input_type))
        self._output = pydantic.TypeAdapter(output_type)

    def encode_input(self, value: _In) -> bytes:
        """Serialise *value* as the declared input type."""
        return self._input.dump_json(self._input.validate_python(value))

    def decode_input(self, raw: bytes) -> _In:
        """Deserialise a request body, rejecting unknown fields at any depth.

        The strict pass only checks the body; the returned value is decoded
        as the declared type so callers get instances of their own models.
        """
        self._strict_input.validate_json(raw)
        return t.cast("_In", self._input.validate_json(raw))

    def encode_output(self, value: _Out) -> bytes:
        """Serialise *value* as the declared output type."""
        return self._output.dump_json(self._output.validate_python(value))

    def decode_output(self, raw: bytes) -> _Out:
        """Deserialise a response body."""
        return t.cast("_Out", self._output.validate_json(raw))


__all__ = ["Codec", "ModelCodec", "strict_type"]
