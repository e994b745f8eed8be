"""Example plugin whose ``exec`` function upper-cases text."""

from __future__ import annotations

from examples._models import TextInput, TextOutput
from procplug import FunctionEndpoint, PluginServer, RequestContext


def run(ctx: RequestContext, payload: TextInput) -> TextOutput:
    return TextOutput(text=payload.text.upper())


if __name__ == "__main__":
    server = PluginServer()
    server.register_function("exec", FunctionEndpoint(run))
    server.start()
