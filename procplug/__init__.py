"""Run typed functions in separate plugin processes over loopback HTTP.

A plugin executable builds a :class:`PluginServer`, registers functions and
calls :meth:`PluginServer.start`. The host launches it with a
:class:`Client`, which reads the announced port, waits for the plugin to
become healthy and hands out a :class:`Connection` that
:class:`Function` stubs use to make calls.
"""

from __future__ import annotations

from .client import Client, HealthSignal
from .codec import Codec, ModelCodec
from .config import ClientConfig
from .connection import Connection
from .endpoint import EndpointResponse, FunctionEndpoint, RequestContext
from .errors import (
    FunctionExecutionError,
    FunctionNotFoundError,
    LifecycleError,
    PluginError,
    PluginExecutionError,
    PluginNotFoundError,
    SchemaDerivationError,
)
from .function import Function
from .schema import Schema
from .server import HEALTH_PATH, SCHEMAS_PATH, PluginServer
from .validator import EvaluationResult, Validator

__all__ = [
    "HEALTH_PATH",
    "SCHEMAS_PATH",
    "Client",
    "ClientConfig",
    "Codec",
    "Connection",
    "EndpointResponse",
    "EvaluationResult",
    "Function",
    "FunctionEndpoint",
    "FunctionExecutionError",
    "FunctionNotFoundError",
    "HealthSignal",
    "LifecycleError",
    "ModelCodec",
    "PluginError",
    "PluginExecutionError",
    "PluginNotFoundError",
    "PluginServer",
    "RequestContext",
    "Schema",
    "SchemaDerivationError",
    "Validator",
]
