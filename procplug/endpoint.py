"""Plugin-side binding of a typed Python callable to an HTTP path."""

from __future__ import annotations

import dataclasses as dc
import http
import inspect
import logging
import threading
import typing as t

from .codec import ModelCodec
from .schema import Schema, schema_for_function

if t.TYPE_CHECKING:  # pragma: no cover - used only for typing
    from .validator import Validator

logger = logging.getLogger(__name__)

_In = t.TypeVar("_In")
_Out = t.TypeVar("_Out")

JSON_CONTENT_TYPE: t.Final[str] = "application/json"
TEXT_CONTENT_TYPE: t.Final[str] = "text/plain; charset=utf-8"

_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


@dc.dataclass(frozen=True, slots=True)
class RequestContext:
    """Per-request information handed to plugin functions.

    ``cancelled`` is set when the plugin server is stopping; long-running
    functions may poll it to finish early.
    """

    function: str
    headers: t.Mapping[str, str] = dc.field(default_factory=dict)
    client_address: str = ""
    cancelled: threading.Event = dc.field(default_factory=threading.Event)


@dc.dataclass(frozen=True, slots=True)
class EndpointResponse:
    """Status, body and content type produced for one request."""

    status: int
    body: bytes = b""
    content_type: str = TEXT_CONTENT_TYPE

    @classmethod
    def text(cls, status: int, message: str) -> EndpointResponse:
        """Return a plain-text response."""
        return cls(status=status, body=message.encode("utf-8"))

    @classmethod
    def json(cls, body: bytes, status: int = http.HTTPStatus.OK) -> EndpointResponse:
        """Return a JSON response carrying the already-encoded *body*."""
        return cls(status=status, body=body, content_type=JSON_CONTENT_TYPE)


FunctionHandler = t.Callable[[RequestContext, _In], _Out]


def _resolve_signature(fn: t.Callable[..., t.Any]) -> tuple[t.Any, t.Any]:
    """Return the annotated input and output types of *fn*.

    The input type is the annotation of the last positional parameter.
    Missing or unresolvable annotations yield :data:`typing.Any`.
    """
    target = fn
    if not (inspect.isfunction(fn) or inspect.ismethod(fn)):
        target = fn.__call__  # type: ignore[operator]
    try:
        hints = t.get_type_hints(target)
    except (NameError, TypeError) as exc:
        logger.debug("Cannot resolve annotations of %r: %s", fn, exc)
        hints = {}
    params = [
        param
        for param in inspect.signature(fn).parameters.values()
        if param.kind in _POSITIONAL
    ]
    input_type = hints.get(params[-1].name, t.Any) if params else t.Any
    return input_type, hints.get("return", t.Any)


class FunctionEndpoint(t.Generic[_In, _Out]):
    """Serve one plugin function: decode, validate, invoke and encode.

    *fn* receives a :class:`RequestContext` and the decoded input and returns
    the output value; raising any exception reports a failure to the caller.
    Input and output types are taken from *fn*'s annotations unless given
    explicitly.
    """

    def __init__(
        self,
        fn: FunctionHandler[_In, _Out],
        validator: Validator[_In] | None = None,
        *,
        input_type: t.Any = None,  # noqa: ANN401
        output_type: t.Any = None,  # noqa: ANN401
    ) -> None:
        hinted_input, hinted_output = _resolve_signature(fn)
        self._fn = fn
        self._validator = validator
        self.input_type = hinted_input if input_type is None else input_type
        self.output_type = hinted_output if output_type is None else output_type
        self._codec: ModelCodec[_In, _Out] = ModelCodec(
            self.input_type, self.output_type
        )
        self.schema: Schema = schema_for_function(self.input_type, self.output_type)

    @property
    def validator(self) -> Validator[_In] | None:
        """Return the validator applied before decoding, if any."""
        return self._validator

    def handle(self, method: str, body: bytes, ctx: RequestContext) -> EndpointResponse:
        """Process one request for this function."""
        if method != "POST":
            logger.warning("Method not allowed for %s: %s", ctx.function, method)
            return EndpointResponse.text(
                http.HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed"
            )

        if self._validator is not None:
            result = self._validator.validate(body)
            if not result.valid:
                message = f"invalid input: {result.describe()}"
                logger.info("Rejected input for %s: %s", ctx.function, message)
                return EndpointResponse.text(http.HTTPStatus.BAD_REQUEST, message)

        try:
            payload = self._codec.decode_input(body)
        except ValueError as exc:
            logger.info("Error decoding request for %s: %s", ctx.function, exc)
            return EndpointResponse.text(http.HTTPStatus.BAD_REQUEST, str(exc))

        try:
            output = self._fn(ctx, payload)
        except Exception as exc:
            logger.exception("Error executing function %s", ctx.function)
            message = str(exc) or exc.__class__.__name__
            return EndpointResponse.text(http.HTTPStatus.INTERNAL_SERVER_ERROR, message)

        try:
            encoded = self._codec.encode_output(output)
        except ValueError as exc:
            logger.exception("Error encoding response for %s", ctx.function)
            return EndpointResponse.text(
                http.HTTPStatus.INTERNAL_SERVER_ERROR,
                f"error encoding response: {exc}",
            )
        return EndpointResponse.json(encoded)


__all__ = [
    "EndpointResponse",
    "FunctionEndpoint",
    "FunctionHandler",
    "RequestContext",
]
