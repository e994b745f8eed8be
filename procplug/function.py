"""Host-side typed proxy for one remote plugin function."""

from __future__ import annotations

import http
import logging
import typing as t
from types import TracebackType

import httpx

from ._validators import validate_function_name, validate_positive_finite_timeout
from .codec import Codec, ModelCodec
from .config import DEFAULT_FUNCTION_TIMEOUT
from .errors import FunctionExecutionError, FunctionNotFoundError
from .schema import Schema
from .server import SCHEMAS_PATH

if t.TYPE_CHECKING:  # pragma: no cover - used only for typing
    from .connection import Connection

logger = logging.getLogger(__name__)

_In = t.TypeVar("_In")
_Out = t.TypeVar("_Out")


class Function(t.Generic[_In, _Out]):
    """Call the plugin function *name* through *connection*.

    Inputs are encoded as *input_type* and responses decoded as
    *output_type* unless a custom *codec* is supplied. Every failure is
    reported as :class:`~procplug.errors.FunctionExecutionError`; the
    connection stays usable afterwards.
    """

    def __init__(
        self,
        name: str,
        connection: Connection | None,
        input_type: type[_In] | t.Any = t.Any,  # noqa: ANN401
        output_type: type[_Out] | t.Any = t.Any,  # noqa: ANN401
        *,
        codec: Codec[_In, _Out] | None = None,
    ) -> None:
        validate_function_name(name)
        self._name = name
        self._connection = connection
        self._codec: Codec[_In, _Out] = codec or ModelCodec(input_type, output_type)
        timeout = (
            connection.function_timeout
            if connection is not None
            else DEFAULT_FUNCTION_TIMEOUT
        )
        self._http = httpx.Client(timeout=timeout, trust_env=False)
        self._closed = False

    @property
    def name(self) -> str:
        """Return the function name as registered with the plugin."""
        return self._name

    @property
    def timeout(self) -> float | None:
        """Return the per-request timeout in seconds."""
        return self._http.timeout.read

    def set_timeout(self, timeout: float) -> None:
        """Override the connection's timeout for this function only."""
        validate_positive_finite_timeout(timeout)
        self._http.timeout = httpx.Timeout(timeout)

    def __enter__(self) -> Function[_In, _Out]:
        """Return the stub itself."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Release the HTTP client when leaving a context."""
        self.close()

    def close(self) -> None:
        """Release the underlying HTTP client."""
        self._closed = True
        self._http.close()

    def call(self, payload: _In) -> _Out:
        """Invoke the remote function with *payload* and return its result."""
        url = self._url(self._name)
        try:
            body = self._codec.encode_input(payload)
        except ValueError as exc:
            raise FunctionExecutionError(self._name, exc) from exc

        response = self._send("POST", url, content=body)
        try:
            return self._codec.decode_output(response.content)
        except ValueError as exc:
            raise FunctionExecutionError(self._name, exc) from exc

    def schema(self) -> Schema:
        """Fetch the input and output schemas of the remote function."""
        response = self._send("GET", self._url(f"{self._name}{SCHEMAS_PATH}"))
        try:
            return Schema.from_payload(response.json())
        except (TypeError, ValueError) as exc:
            raise FunctionExecutionError(self._name, exc) from exc

    def _url(self, path: str) -> str:
        if self._closed:
            raise FunctionExecutionError(self._name, "function stub is closed")
        connection = self._connection
        if connection is None:
            raise FunctionExecutionError(self._name, "plugin is not connected")
        if connection.closed:
            raise FunctionExecutionError(self._name, "plugin connection is closed")
        return connection.url_for(path)

    def _send(
        self, method: str, url: str, content: bytes | None = None
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json"} if content is not None else None
        try:
            response = self._http.request(
                method, url, content=content, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.debug("Request %s %s failed: %s", method, url, exc)
            raise FunctionExecutionError(self._name, exc) from exc

        if response.status_code == http.HTTPStatus.OK:
            return response
        cause = f"plugin returned status {response.status_code}: {response.text}"
        if response.status_code == http.HTTPStatus.NOT_FOUND:
            raise FunctionNotFoundError(self._name, cause)
        raise FunctionExecutionError(self._name, cause)


__all__ = ["Function"]
