"""Unit tests for :class:`procplug.function.Function` and connections."""

from __future__ import annotations

import dataclasses as dc
import socket
import typing as t

import httpx
import pydantic
import pytest

from procplug.connection import Connection
from procplug.endpoint import FunctionEndpoint, RequestContext
from procplug.errors import FunctionExecutionError, FunctionNotFoundError
from procplug.function import Function
from procplug.schema import Schema
from procplug.unittests._server_helpers import quiet_server, serving
from procplug.validator import Validator


class HelloInput(pydantic.BaseModel):
    name: str = pydantic.Field(min_length=3)


class HelloOutput(pydantic.BaseModel):
    greeting: str


class Delay(pydantic.BaseModel):
    seconds: float


def hello(ctx: RequestContext, payload: HelloInput) -> HelloOutput:
    return HelloOutput(greeting=f"hello, {payload.name}!")


def fail(ctx: RequestContext, payload: HelloInput) -> HelloOutput:
    msg = "boom"
    raise RuntimeError(msg)


def echo(ctx: RequestContext, payload: dict[str, t.Any]) -> dict[str, t.Any]:
    return payload


def sleep(ctx: RequestContext, payload: Delay) -> Delay:
    ctx.cancelled.wait(payload.seconds)
    return payload


@pytest.fixture(scope="module")
def connection() -> t.Iterator[Connection]:
    """Serve the test functions in-process for the whole module."""
    server, _ = quiet_server()
    server.register_function("hello", FunctionEndpoint(hello, Validator(HelloInput)))
    server.register_function("fail", FunctionEndpoint(fail))
    server.register_function("echo", FunctionEndpoint(echo))
    server.register_function("sleep", FunctionEndpoint(sleep))
    with serving(server) as base_url:
        yield Connection(base_url=base_url, function_timeout=5.0)


@pytest.fixture
def unused_port() -> t.Iterator[int]:
    """Reserve a loopback port that refuses connections."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        yield sock.getsockname()[1]


def test_connection_for_port() -> None:
    """Connections address the loopback interface."""
    conn = Connection.for_port(8080, 3.0)
    assert conn.base_url == "http://127.0.0.1:8080"
    assert conn.function_timeout == 3.0
    assert conn.url_for("/_healthz") == "http://127.0.0.1:8080/_healthz"
    assert conn.url_for("hello") == "http://127.0.0.1:8080/hello"


def test_connection_is_immutable_and_revocable() -> None:
    """Revocation flips ``closed`` without changing the connection's data."""
    conn = Connection.for_port(8080)
    with pytest.raises(dc.FrozenInstanceError):
        conn.base_url = "http://example.invalid"  # type: ignore[misc]
    conn.revoke()
    assert conn.closed
    assert conn == Connection.for_port(8080)


def test_call_round_trip(connection: Connection) -> None:
    """Typed values survive the trip to the plugin and back."""
    with Function("hello", connection, HelloInput, HelloOutput) as fn:
        assert fn.name == "hello"
        assert fn.call(HelloInput(name="world")) == HelloOutput(
            greeting="hello, world!"
        )


def test_untyped_call_round_trip(connection: Connection) -> None:
    """Without types, JSON values are passed through unchanged."""
    payload = {"nested": {"list": [1, 2.5, "three", None, True]}}
    with Function("echo", connection) as fn:
        assert fn.call(payload) == payload


def test_validation_failure_is_function_error(connection: Connection) -> None:
    """A 400 from the plugin surfaces with its status and body."""
    with Function("hello", connection) as fn:
        with pytest.raises(FunctionExecutionError, match="status 400") as excinfo:
            fn.call({"name": ""})
    assert excinfo.value.function == "hello"
    assert "invalid input" in str(excinfo.value.cause)


def test_local_encode_failure_sends_nothing(connection: Connection) -> None:
    """Values that do not fit the input type fail before any request."""
    with Function("hello", connection, HelloInput, HelloOutput) as fn:
        with pytest.raises(FunctionExecutionError) as excinfo:
            fn.call({"name": 3})  # type: ignore[arg-type]
    assert isinstance(excinfo.value.cause, pydantic.ValidationError)


def test_function_failure_is_function_error(connection: Connection) -> None:
    """A 500 carries the plugin's error message."""
    with Function("fail", connection, HelloInput, HelloOutput) as fn:
        with pytest.raises(FunctionExecutionError, match="status 500: boom"):
            fn.call(HelloInput(name="abc"))


def test_unknown_function_is_not_found(connection: Connection) -> None:
    """A 404 raises the specific subclass."""
    with Function("missing", connection) as fn:
        with pytest.raises(FunctionNotFoundError, match="status 404"):
            fn.call({})


def test_response_decode_failure(connection: Connection) -> None:
    """A response not matching the output type is a function error."""
    with Function("echo", connection, dict[str, t.Any], HelloOutput) as fn:
        with pytest.raises(FunctionExecutionError) as excinfo:
            fn.call({"unexpected": 1})
    assert isinstance(excinfo.value.cause, pydantic.ValidationError)


def test_schema(connection: Connection) -> None:
    """The stub fetches its function's schema document."""
    with Function("hello", connection) as fn:
        schema = fn.schema()
    assert isinstance(schema, Schema)
    assert schema.input["properties"]["name"]["minLength"] == 3
    assert schema.output["required"] == ["greeting"]


def test_set_timeout_applies_per_stub(connection: Connection) -> None:
    """A shorter timeout turns a slow call into a function error."""
    with Function("sleep", connection, Delay, Delay) as fn:
        assert fn.timeout == connection.function_timeout
        fn.set_timeout(0.2)
        assert fn.timeout == 0.2
        with pytest.raises(FunctionExecutionError) as excinfo:
            fn.call(Delay(seconds=2.0))
    assert isinstance(excinfo.value.cause, httpx.TimeoutException)


def test_set_timeout_validates() -> None:
    """Non-positive timeouts are refused."""
    with Function("hello", None) as fn, pytest.raises(ValueError, match="timeout"):
        fn.set_timeout(0)


def test_missing_connection_fails_without_io() -> None:
    """A stub built before the plugin was opened fails cleanly."""
    with Function("hello", None) as fn:
        with pytest.raises(FunctionExecutionError, match="not connected"):
            fn.call({})
        with pytest.raises(FunctionExecutionError, match="not connected"):
            fn.schema()


def test_revoked_connection_fails_without_io(unused_port: int) -> None:
    """Calls through a revoked connection do not reach the network."""
    conn = Connection.for_port(unused_port)
    conn.revoke()
    with Function("hello", conn) as fn:
        with pytest.raises(FunctionExecutionError, match="connection is closed"):
            fn.call({})


def test_closed_stub_fails(connection: Connection) -> None:
    """A closed stub refuses further calls."""
    fn = Function("echo", connection)
    fn.close()
    with pytest.raises(FunctionExecutionError, match="stub is closed"):
        fn.call({})


def test_transport_error_is_function_error(unused_port: int) -> None:
    """Refused connections are reported as function errors."""
    with Function("hello", Connection.for_port(unused_port, 1.0)) as fn:
        with pytest.raises(FunctionExecutionError) as excinfo:
            fn.call({})
    assert isinstance(excinfo.value.cause, httpx.TransportError)


def test_invalid_name_rejected() -> None:
    """Stub names follow the same rules as registered functions."""
    with pytest.raises(ValueError, match="cannot start with '/'"):
        Function("/hello", None)
