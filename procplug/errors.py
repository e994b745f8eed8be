"""Exception hierarchy for procplug."""

from __future__ import annotations

from pathlib import Path


class PluginError(Exception):
    """Base class for all procplug errors."""


class PluginNotFoundError(PluginError):
    """Raised when the plugin executable is missing or is a directory."""

    def __init__(self, path: str | Path, reason: str | None = None) -> None:
        self.path = Path(path)
        self.reason = reason
        detail = reason or "no such file"
        super().__init__(f"plugin not found: {self.path}: {detail}")


class PluginExecutionError(PluginError):
    """Raised when a plugin cannot be started, reached or introspected."""

    def __init__(self, message: str) -> None:
        super().__init__(f"plugin execution error: {message}")


class LifecycleError(PluginError):
    """Raised when an operation is attempted in the wrong lifecycle state."""


class SchemaDerivationError(PluginError):
    """Raised when a schema cannot be derived from a type or compiled."""


class FunctionExecutionError(PluginError):
    """Raised when a remote function call fails.

    The failure is local to the call: the connection it was made through
    remains usable for subsequent calls.
    """

    def __init__(self, function: str, cause: BaseException | str) -> None:
        self.function = function
        self.cause = cause
        super().__init__(f"error executing function {function!r}: {cause}")


class FunctionNotFoundError(FunctionExecutionError):
    """Raised when the plugin does not serve the requested function."""


__all__ = [
    "FunctionExecutionError",
    "FunctionNotFoundError",
    "LifecycleError",
    "PluginError",
    "PluginExecutionError",
    "PluginNotFoundError",
    "SchemaDerivationError",
]
