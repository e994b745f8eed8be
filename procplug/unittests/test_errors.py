"""Unit tests for the error hierarchy."""

from __future__ import annotations

from pathlib import Path

import pytest

from procplug.errors import (
    FunctionExecutionError,
    FunctionNotFoundError,
    LifecycleError,
    PluginError,
    PluginExecutionError,
    PluginNotFoundError,
    SchemaDerivationError,
)


@pytest.mark.parametrize(
    "error_type",
    [
        PluginNotFoundError,
        PluginExecutionError,
        LifecycleError,
        SchemaDerivationError,
        FunctionExecutionError,
    ],
)
def test_every_error_is_a_plugin_error(error_type: type[Exception]) -> None:
    """Callers can catch everything through :class:`PluginError`."""
    assert issubclass(error_type, PluginError)


def test_plugin_not_found_carries_path() -> None:
    """The missing path and reason are kept on the error."""
    err = PluginNotFoundError("/nope/plugin", "is a directory")
    assert err.path == Path("/nope/plugin")
    assert err.reason == "is a directory"
    assert str(err) == "plugin not found: /nope/plugin: is a directory"


def test_function_errors_carry_cause() -> None:
    """Function errors name the function and keep the cause."""
    cause = ConnectionError("refused")
    err = FunctionNotFoundError("hello", cause)
    assert isinstance(err, FunctionExecutionError)
    assert err.function == "hello"
    assert err.cause is cause
    assert str(err) == "error executing function 'hello': refused"


def test_plugin_execution_error_prefix() -> None:
    """Execution errors share a common prefix."""
    assert str(PluginExecutionError("boom")) == "plugin execution error: boom"
